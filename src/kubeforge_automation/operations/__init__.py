from .base import Operation
from .edit_file import EditFileOperation
from .exec import ExecOperation
from .file import FileOperation
from .firewall import FirewallPortOperation
from .join_credential import JoinCredentialOperation
from .package import PackageOperation
from .service import ServiceOperation
from .swap import SwapOffOperation
from .sysctl import SysctlOperation
from .yum_repo import YumRepoOperation

OPERATION_REGISTRY = {
    "sysctl": SysctlOperation,
    "firewall": FirewallPortOperation,
    "swap": SwapOffOperation,
    "package": PackageOperation,
    "yum_repo": YumRepoOperation,
    "edit_file": EditFileOperation,
    "file": FileOperation,
    "service": ServiceOperation,
    "exec": ExecOperation,
    "join_credential": JoinCredentialOperation,
}

__all__ = [
    "Operation",
    "SysctlOperation",
    "FirewallPortOperation",
    "SwapOffOperation",
    "PackageOperation",
    "YumRepoOperation",
    "EditFileOperation",
    "FileOperation",
    "ServiceOperation",
    "ExecOperation",
    "JoinCredentialOperation",
    "OPERATION_REGISTRY",
]
