from .base import Operation
from .connection import ResetConnectionOperation, WaitReachableOperation
from .exec import ExecOperation
from .file import FileOperation
from .package import PackageOperation
from .service import ServiceOperation
from .user import UserOperation

OPERATION_REGISTRY = {
    "package": PackageOperation,
    "service": ServiceOperation,
    "user": UserOperation,
    "file": FileOperation,
    "exec": ExecOperation,
    "wait_reachable": WaitReachableOperation,
    "reset_connection": ResetConnectionOperation,
}

__all__ = [
    "Operation",
    "PackageOperation",
    "ServiceOperation",
    "UserOperation",
    "FileOperation",
    "ExecOperation",
    "WaitReachableOperation",
    "ResetConnectionOperation",
    "OPERATION_REGISTRY",
]
