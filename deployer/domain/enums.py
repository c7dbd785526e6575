"""领域枚举定义：统一项目类型、流水线阶段与错误分类取值。"""

from __future__ import annotations

from enum import Enum


class ProjectKind(str, Enum):
    """项目类型枚举，决定构建配方。"""
    next = "next"
    react = "react"
    vue = "vue"
    static = "static"
    unrecognized = "unrecognized"


class PipelineStage(str, Enum):
    """部署流水线状态机阶段。"""
    init = "init"
    acquiring = "acquiring"
    analyzing = "analyzing"
    building = "building"
    publishing = "publishing"
    registering = "registering"
    done = "done"
    failed = "failed"


class ErrorKind(str, Enum):
    """对外暴露的错误分类。"""
    input_validation = "InputValidationError"
    acquisition = "AcquisitionError"
    unsupported_project_kind = "UnsupportedProjectKind"
    build_output_missing = "BuildOutputMissing"
    build_command_failed = "BuildCommandFailed"
    publication = "PublicationError"
    registration = "RegistrationError"
