"""Path handling for context-source resolution and session file layout.

Paths arrive as plain strings because the filesystem collaborator may be remote;
every helper here is pure string manipulation and never touches the disk.
"""
from __future__ import annotations

import re

CLAUDE_MD_NAME = "CLAUDE.md"

_DRIVE_PATTERN = re.compile(r"^[A-Za-z]:")
_LEGACY_WINDOWS_ENCODED = re.compile(r"^([A-Za-z])--(.+)$")
_ENCODED_PATH_PATTERN = re.compile(r"^-[A-Za-z0-9_.\s:-]+$")
_LEGACY_ENCODED_PATTERN = re.compile(r"^[A-Za-z]--[A-Za-z0-9_.\s-]+$")
_SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")


# ── Path joining ───────────────────────────────────────────────────

def is_absolute_path(path: str) -> bool:
    return (
        path.startswith("/")
        or path.startswith("~")
        or path.startswith("\\\\")
        or bool(_DRIVE_PATTERN.match(path))
    )


def trim_trailing_separator(value: str) -> str:
    end = len(value)
    while end > 0 and value[end - 1] in "/\\":
        end -= 1
    return value[:end]


def normalize_separators(value: str, separator: str) -> str:
    """Rewrite every run of `/` or `\\` as a single `separator`."""
    output: list[str] = []
    previous_was_separator = False
    for char in value:
        if char in "/\\":
            if not previous_was_separator:
                output.append(separator)
            previous_was_separator = True
        else:
            output.append(char)
            previous_was_separator = False
    return "".join(output)


def split_path(value: str) -> list[str]:
    return [part for part in re.split(r"[/\\]", value) if part]


def path_separator(base: str) -> str:
    return "\\" if "\\" in base else "/"


def join_paths(base: str, relative: str) -> str:
    """Resolve `relative` against directory `base`.

    Absolute inputs come back unchanged. A leading `@` mention marker and `./` are
    stripped, each leading `../` pops one trailing base segment (never the last
    remaining one), and separators follow the base path's style.
    """
    if is_absolute_path(relative):
        return relative

    clean_base = trim_trailing_separator(base)
    clean_relative = relative
    if clean_relative.startswith("@"):
        clean_relative = clean_relative[1:]
    if clean_relative.startswith("./"):
        clean_relative = clean_relative[2:]

    separator = path_separator(base)
    has_unix_root = base.startswith("/")
    has_unc_root = base.startswith("\\\\")
    remaining = normalize_separators(clean_relative, separator)
    base_parts = split_path(clean_base)

    parent_marker = f"..{separator}"
    while remaining.startswith(parent_marker):
        remaining = remaining[len(parent_marker):]
        if len(base_parts) > 1:
            base_parts.pop()

    joined_base = separator.join(base_parts)
    if has_unix_root and not joined_base.startswith("/"):
        joined_base = f"/{joined_base}"
    if has_unc_root and not joined_base.startswith("\\\\"):
        joined_base = f"\\\\{joined_base}"
    if not remaining:
        return joined_base
    if joined_base.endswith(separator):
        return f"{joined_base}{remaining}"
    return f"{joined_base}{separator}{remaining}"


def resolve_path(project_root: str, path: str) -> str:
    return path if is_absolute_path(path) else join_paths(project_root, path)


def normalize_for_comparison(path: str) -> str:
    return path.replace("\\", "/")


def expand_home(path: str, home: str) -> str:
    if path == "~":
        return home
    if path.startswith("~/") or path.startswith("~\\"):
        return join_paths(home, path[2:])
    return path


def path_hash(value: str) -> str:
    """32-bit rolling hash over UTF-16 code units, rendered as hex of its magnitude.

    This is the identity contract for path-keyed context injections: any
    implementation hashing the same normalized path must produce the same string.
    """
    encoded = value.encode("utf-16-le")
    acc = 0
    for offset in range(0, len(encoded), 2):
        unit = encoded[offset] | (encoded[offset + 1] << 8)
        acc = ((acc << 5) - acc + unit) & 0xFFFFFFFF
    if acc & 0x80000000:
        acc -= 0x100000000
    return format(abs(acc), "x")


def basename(path: str) -> str:
    parts = split_path(path)
    return parts[-1] if parts else path


def relative_display_name(path: str, project_root: str) -> str:
    root = normalize_for_comparison(trim_trailing_separator(project_root))
    normalized = normalize_for_comparison(path)
    if root and normalized.startswith(root + "/"):
        return normalized[len(root) + 1:]
    return path


# ── Context source candidates ──────────────────────────────────────

def global_source_candidates(project_root: str, home_dir: str, enterprise_path: str) -> list[tuple[str, str]]:
    """Return (source, absolute path) pairs for configuration loaded at phase start."""
    root = trim_trailing_separator(project_root)
    separator = path_separator(root)
    home = trim_trailing_separator(home_dir)
    home_separator = path_separator(home)
    candidates: list[tuple[str, str]] = []
    if enterprise_path:
        candidates.append(("enterprise", enterprise_path))
    if home:
        candidates.append(("user", f"{home}{home_separator}.claude{home_separator}{CLAUDE_MD_NAME}"))
    if root:
        candidates.append(("project", f"{root}{separator}{CLAUDE_MD_NAME}"))
        candidates.append(("project", f"{root}{separator}.claude{separator}{CLAUDE_MD_NAME}"))
        candidates.append(("project-local", f"{root}{separator}CLAUDE.local.md"))
    return candidates


def is_global_project_source(path: str, project_root: str) -> bool:
    root = normalize_for_comparison(trim_trailing_separator(project_root))
    normalized = normalize_for_comparison(path)
    return normalized in {
        f"{root}/{CLAUDE_MD_NAME}",
        f"{root}/.claude/{CLAUDE_MD_NAME}",
        f"{root}/CLAUDE.local.md",
    }


def directory_source_candidates(file_path: str, project_root: str) -> list[str]:
    """Directory-level CLAUDE.md files implicitly loaded when `file_path` is touched.

    Only ancestors strictly below the project root qualify, outermost first.
    """
    root = trim_trailing_separator(project_root)
    if not root or not file_path:
        return []
    root_cmp = normalize_for_comparison(root)
    file_cmp = normalize_for_comparison(file_path)
    if not file_cmp.startswith(root_cmp + "/"):
        return []

    separator = path_separator(root)
    directories = [part for part in file_cmp[len(root_cmp) + 1:].split("/") if part][:-1]
    candidates: list[str] = []
    current = root
    for directory in directories:
        current = f"{current}{separator}{directory}"
        candidates.append(f"{current}{separator}{CLAUDE_MD_NAME}")
    return candidates


# ── Session file layout ────────────────────────────────────────────

def encode_project_path(absolute_path: str) -> str:
    if not absolute_path:
        return ""
    encoded = re.sub(r"[/\\]", "-", absolute_path)
    return encoded if encoded.startswith("-") else f"-{encoded}"


def decode_project_path(encoded_name: str) -> str:
    """Best-effort inverse of `encode_project_path`; lossy for names containing dashes."""
    if not encoded_name:
        return ""
    legacy = _LEGACY_WINDOWS_ENCODED.match(encoded_name)
    if legacy:
        return f"{legacy.group(1).upper()}:/{legacy.group(2).replace('-', '/')}"
    decoded = (encoded_name[1:] if encoded_name.startswith("-") else encoded_name).replace("-", "/")
    if re.match(r"^[A-Za-z]:/", decoded):
        return decoded
    return decoded if decoded.startswith("/") else f"/{decoded}"


def is_valid_encoded_path(encoded_name: str) -> bool:
    if not encoded_name:
        return False
    if _LEGACY_ENCODED_PATTERN.match(encoded_name):
        return True
    if not _ENCODED_PATH_PATTERN.match(encoded_name):
        return False
    first_colon = encoded_name.find(":")
    if first_colon == -1:
        return True
    if not re.match(r"^-[A-Za-z]:", encoded_name):
        return False
    return ":" not in encoded_name[first_colon + 1:]


def extract_base_dir(project_id: str) -> str:
    """Composite ids (`<encoded>::<hash>`) map onto their encoded directory."""
    return project_id.split("::", 1)[0]


def is_valid_project_id(project_id: str) -> bool:
    if not project_id:
        return False
    if "::" not in project_id:
        return is_valid_encoded_path(project_id)
    base, _, suffix = project_id.partition("::")
    return is_valid_encoded_path(base) and bool(re.match(r"^[a-f0-9]{8}$", suffix))


def is_valid_session_id(session_id: str) -> bool:
    return bool(session_id) and bool(_SESSION_ID_PATTERN.match(session_id)) and ".." not in session_id


def build_session_path(projects_dir: str, project_id: str, session_id: str) -> str:
    return f"{trim_trailing_separator(projects_dir)}/{extract_base_dir(project_id)}/{session_id}.jsonl"


def build_subagents_dir(session_path: str) -> str:
    """`<dir>/<session>.jsonl` keeps its nested sessions under `<dir>/<session>/subagents`."""
    trimmed = session_path[: -len(".jsonl")] if session_path.endswith(".jsonl") else session_path
    separator = path_separator(trimmed)
    return f"{trimmed}{separator}subagents"


def build_todo_path(todos_dir: str, session_id: str) -> str:
    return f"{trim_trailing_separator(todos_dir)}/{session_id}.json"


def session_id_from_path(path: str) -> str:
    name = basename(path)
    return name[: -len(".jsonl")] if name.endswith(".jsonl") else name
