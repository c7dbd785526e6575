"""Next.js 配置修补：确保构建输出为静态导出（output: "export"）。

处理顺序：
- 无配置文件时按包模块类型生成最小配置；
- 已声明 export 时保持不变；
- 声明了其他 output 取值时仅替换取值；
- 能定位导出的对象字面量时在对象首行注入设置；
- 其余写法（函数导出、插件包装等）保留原文件并生成包装配置合并设置。
"""

from __future__ import annotations

import json
import logging
import re
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)

CONFIG_CANDIDATES = ("next.config.js", "next.config.mjs", "next.config.cjs", "next.config.ts")
EXPORT_SETTING = 'output: "export",'

_EXPORT_DECLARED_RE = re.compile(r"""\boutput\s*:\s*(['"`])export\1""")
_OUTPUT_VALUE_RE = re.compile(r"""(\boutput\s*:\s*)(['"`])[^'"`]*\2""")
_DIRECT_OBJECT_RE = re.compile(r"(module\.exports\s*=\s*\{|export\s+default\s+\{)")
_EXPORTED_NAME_RE = re.compile(r"(?:module\.exports\s*=\s*|export\s+default\s+)([A-Za-z_$][\w$]*)\s*;?\s*$", re.MULTILINE)

_SYNTHESIZED_BODY = """/** @type {import('next').NextConfig} */
const nextConfig = {
  output: "export",
};

"""

_WRAPPER_BODY = """const base = typeof original === "function" ? await original(...args) : original;
  return { ...base, output: "export" };
};
"""


class ConfigPatchAction(str, Enum):
    """配置修补动作。"""
    unchanged = "unchanged"
    synthesized = "synthesized"
    replaced_value = "replaced_value"
    injected = "injected"
    wrapped = "wrapped"


def find_config(source_root: Path) -> Path | None:
    for name in CONFIG_CANDIDATES:
        candidate = source_root / name
        if candidate.is_file():
            return candidate
    return None


def is_module_package(source_root: Path) -> bool:
    """package.json 声明 "type": "module" 时 .js 按 ESM 解析。"""
    manifest = source_root / "package.json"
    if not manifest.is_file():
        return False
    try:
        payload = json.loads(manifest.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        return False
    return isinstance(payload, dict) and payload.get("type") == "module"


def inject_static_export(content: str) -> str | None:
    """在导出的配置对象字面量首行注入 output 设置；找不到对象时返回 None。"""
    match = _DIRECT_OBJECT_RE.search(content)
    if match is None:
        name_match = _EXPORTED_NAME_RE.search(content)
        if name_match is None:
            return None
        binding_re = re.compile(
            rf"(?:const|let|var)\s+{re.escape(name_match.group(1))}\s*(?::\s*[\w.<>\[\]]+\s*)?=\s*\{{"
        )
        match = binding_re.search(content)
        if match is None:
            return None
    insert_at = match.end()
    return f"{content[:insert_at]}\n  {EXPORT_SETTING}{content[insert_at:]}"


def _uses_esm(config_path: Path, source_root: Path) -> bool:
    if config_path.suffix in {".mjs", ".ts"}:
        return True
    if config_path.suffix == ".cjs":
        return False
    return is_module_package(source_root)


def _write_wrapper(config_path: Path, source_root: Path) -> None:
    """保留原配置为 next.config.original.*，新配置包装原导出并合并 output。"""
    original_path = config_path.with_name(f"next.config.original{config_path.suffix}")
    config_path.replace(original_path)
    import_target = f"./{original_path.stem}" if config_path.suffix == ".ts" else f"./{original_path.name}"
    if _uses_esm(config_path, source_root):
        header = f'import original from "{import_target}";\n\nexport default async (...args) => {{\n  '
    else:
        header = f'const original = require("{import_target}");\n\nmodule.exports = async (...args) => {{\n  '
    config_path.write_text(header + _WRAPPER_BODY, encoding="utf-8")


def ensure_static_export(source_root: Path) -> tuple[Path, ConfigPatchAction]:
    """保证 Next.js 配置声明静态导出，返回配置路径与执行的动作。"""
    config_path = find_config(source_root)
    if config_path is None:
        if is_module_package(source_root):
            config_path = source_root / "next.config.mjs"
            config_path.write_text(_SYNTHESIZED_BODY + "export default nextConfig;\n", encoding="utf-8")
        else:
            config_path = source_root / "next.config.js"
            config_path.write_text(_SYNTHESIZED_BODY + "module.exports = nextConfig;\n", encoding="utf-8")
        action = ConfigPatchAction.synthesized
    else:
        content = config_path.read_text(encoding="utf-8", errors="surrogateescape")
        if _EXPORT_DECLARED_RE.search(content):
            action = ConfigPatchAction.unchanged
        elif _OUTPUT_VALUE_RE.search(content):
            patched = _OUTPUT_VALUE_RE.sub(r'\1"export"', content, count=1)
            config_path.write_text(patched, encoding="utf-8", errors="surrogateescape")
            action = ConfigPatchAction.replaced_value
        else:
            patched = inject_static_export(content)
            if patched is not None:
                config_path.write_text(patched, encoding="utf-8", errors="surrogateescape")
                action = ConfigPatchAction.injected
            else:
                _write_wrapper(config_path, source_root)
                action = ConfigPatchAction.wrapped

    logger.info(
        "next config prepared for static export",
        extra={
            "event": "build.next_config.prepared",
            "payload_preview": {"config": config_path.name, "action": action.value},
        },
    )
    return config_path, action
