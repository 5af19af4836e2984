import json

from kubeforge_automation.secrets import SecretResolver


class FakeClient:
    def __init__(self, secrets):
        self.secrets = secrets
        self.calls = []

    def get_secret_value(self, SecretId):
        self.calls.append(SecretId)
        return {"SecretString": self.secrets[SecretId]}


def fake_boto3(client):
    class FakeBoto3:
        def client(self, name):
            assert name == "secretsmanager"
            return client

    return FakeBoto3()


def test_secret_resolver_plaintext_with_key(monkeypatch):
    resolver = SecretResolver()
    monkeypatch.setattr("kubeforge_automation.secrets.boto3", fake_boto3(FakeClient({"plain": "mypassword"})))

    values = resolver.resolve({"password": {"aws_secret": "plain", "key": "password"}})
    assert values["password"] == "mypassword"


def test_secret_resolver_json_key_and_cache(monkeypatch):
    client = FakeClient({"registry": json.dumps({"user": "pull", "token": "s3cr3t"})})
    monkeypatch.setattr("kubeforge_automation.secrets.boto3", fake_boto3(client))
    resolver = SecretResolver()

    values = resolver.resolve(
        {
            "token": {"aws_secret": "registry", "key": "token"},
            "nested": {"again": {"aws_secret": "registry", "key": "token"}},
            "plain": "value",
        }
    )

    assert values == {"token": "s3cr3t", "nested": {"again": "s3cr3t"}, "plain": "value"}
    assert client.calls == ["registry"]


def test_plain_values_never_touch_aws(monkeypatch):
    monkeypatch.setattr("kubeforge_automation.secrets.boto3", None)

    assert SecretResolver().resolve({"node_name": "cp1", "ports": [1, 2]}) == {
        "node_name": "cp1",
        "ports": [1, 2],
    }
