import logging
import re
from typing import Any

import yaml  # type: ignore
import yaml.constructor

logger = logging.getLogger(__name__)

# Inline tags: "#tag" or "#nested/tag", not headings or URL fragments
INLINE_TAG = re.compile(r"(?:^|(?<=\s))#([^\s#.,;:!?()\[\]{}\"']+)")
FENCED_CODE = re.compile(r"^(```|~~~).*?^\1", re.DOTALL | re.MULTILINE)
INLINE_CODE = re.compile(r"`[^`\n]*`")


# ---------- Frontmatter helpers ----------


def parse_frontmatter(md_text: str) -> tuple[dict[str, Any], str]:
    """Parse YAML frontmatter from markdown text.
    Uses line-by-line parsing instead of regex for reliability.
    Malformed YAML yields empty metadata and the untouched text.
    """
    # Handle potential BOM (Byte Order Mark)
    md_text = md_text.lstrip("\ufeff")

    lines = md_text.split("\n")

    # Check for opening ---
    if not lines or lines[0].strip() != "---":
        return {}, md_text

    # Find closing ---
    yaml_end_line = None
    for i, line in enumerate(lines[1:], start=1):
        if line.strip() == "---":
            yaml_end_line = i
            break

    if yaml_end_line is None:
        return {}, md_text

    raw = "\n".join(lines[1:yaml_end_line])
    body = "\n".join(lines[yaml_end_line + 1 :])

    # Fix tabs (common user error)
    if "\t" in raw:
        raw = raw.replace("\t", "  ")

    try:
        meta = yaml.load(raw, Loader=UniqueKeyLoader) or {}
    except yaml.YAMLError as e:
        logger.debug(f"Ignoring malformed frontmatter: {e}")
        return {}, md_text

    if not isinstance(meta, dict):
        return {}, body
    return meta, body


class UniqueKeyLoader(yaml.SafeLoader):
    """Custom YAML loader that forbids duplicate keys."""

    def construct_mapping(self, node, deep=False):
        mapping = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in mapping:
                raise yaml.constructor.ConstructorError(
                    None, None, f"found duplicate key '{key}'", key_node.start_mark
                )
            mapping.add(key)
        return super().construct_mapping(node, deep)


# ---------- Tags ----------


def normalize_tag(tag: str) -> str:
    return tag.strip().lstrip("#").lower()


def extract_tags(meta: dict[str, Any], body: str) -> list[str]:
    """Normalized tags from frontmatter (`tags`/`tag`) and inline #tags in the body."""
    tags: list[str] = []

    for key in ("tags", "tag"):
        value = meta.get(key)
        if isinstance(value, str):
            # "a, b" and "a b" are both accepted by hosts
            tags.extend(t for t in re.split(r"[,\s]+", value) if t)
        elif isinstance(value, list):
            tags.extend(str(t) for t in value if isinstance(t, (str, int)))

    stripped = INLINE_CODE.sub("", FENCED_CODE.sub("", body))
    tags.extend(m.group(1) for m in INLINE_TAG.finditer(stripped))

    return [t for t in (normalize_tag(t) for t in tags) if t]


def tag_matches(note_tag: str, wanted: str) -> bool:
    """Exact match, or `wanted` is a parent of a nested tag."""
    return note_tag == wanted or note_tag.startswith(wanted + "/")
