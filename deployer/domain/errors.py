"""领域异常定义：每类异常携带对外错误分类。"""

from __future__ import annotations

from deployer.domain.enums import ErrorKind


class DeploymentError(RuntimeError):
    """部署流水线业务异常基类。"""
    error_kind: ErrorKind


class InputValidationError(DeploymentError):
    error_kind = ErrorKind.input_validation


class AcquisitionError(DeploymentError):
    error_kind = ErrorKind.acquisition


class UnsupportedProjectKind(DeploymentError):
    error_kind = ErrorKind.unsupported_project_kind


class BuildOutputMissing(DeploymentError):
    error_kind = ErrorKind.build_output_missing


class BuildCommandFailed(DeploymentError):
    error_kind = ErrorKind.build_command_failed


class PublicationError(DeploymentError):
    error_kind = ErrorKind.publication


class RegistrationError(DeploymentError):
    error_kind = ErrorKind.registration


_ERRORS_BY_KIND: dict[ErrorKind, type[DeploymentError]] = {
    cls.error_kind: cls
    for cls in (
        InputValidationError,
        AcquisitionError,
        UnsupportedProjectKind,
        BuildOutputMissing,
        BuildCommandFailed,
        PublicationError,
        RegistrationError,
    )
}


def error_for_kind(kind: ErrorKind, message: str) -> DeploymentError:
    """按错误分类构造对应异常实例。"""
    return _ERRORS_BY_KIND[kind](message)
