"""
Skill catalog and rule set loading.

Skills live in ~/.claude/skills/<dir>/SKILL.md with a YAML header:

    ---
    name: deploy-helper
    description: Use when deploying ...
    ---
    body text

The rule set is the user's CLAUDE.md. Both are loaded once per run and
shared read-only by every session.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .errors import ContextLoadError

logger = logging.getLogger(__name__)

FRONTMATTER = re.compile(r"\A---\r?\n(.*?)\r?\n---\r?\n?(.*)\Z", re.DOTALL)


@dataclass(frozen=True)
class SkillInfo:
    """One available skill."""

    name: str
    description: str
    content: str = ""


@dataclass(frozen=True)
class ContextInfo:
    """Rule set and skill catalog snapshot for one run."""

    skills: tuple[SkillInfo, ...] = field(default_factory=tuple)
    rules: str = ""

    def referenced(self, names: Iterable[str | None]) -> list[SkillInfo]:
        """Skills named by the given findings, in catalog order."""
        wanted = {n for n in names if n}
        return [s for s in self.skills if s.name in wanted]


def parse_skill(text: str) -> SkillInfo | None:
    """
    Parse a SKILL.md document.

    Returns:
        SkillInfo, or None if the header is missing or lacks name/description
    """
    match = FRONTMATTER.match(text)
    if not match:
        return None
    try:
        header = yaml.safe_load(match.group(1))
    except yaml.YAMLError:
        return None
    if not isinstance(header, dict):
        return None

    name = header.get("name")
    description = header.get("description")
    if not isinstance(name, str) or not isinstance(description, str):
        return None
    if not name.strip() or not description.strip():
        return None
    return SkillInfo(name=name.strip(), description=description.strip(), content=match.group(2).strip())


def load_skills(skills_dir: Path) -> list[SkillInfo]:
    """
    Load every well-formed skill under skills_dir.

    A missing directory means no skills. A directory that exists but cannot
    be listed is a setup failure.
    """
    if not skills_dir.exists():
        return []
    try:
        dirs = sorted(d for d in skills_dir.iterdir() if d.is_dir())
    except OSError as e:
        raise ContextLoadError(f"Cannot read skills directory {skills_dir}: {e}") from e

    skills = []
    for skill_dir in dirs:
        skill_path = skill_dir / "SKILL.md"
        if not skill_path.is_file():
            continue
        try:
            skill = parse_skill(skill_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Skipping unreadable skill {skill_path}: {e}")
            continue
        if skill is None:
            logger.debug(f"Skipping {skill_path}: missing name or description")
            continue
        skills.append(skill)
    return skills


def load_rules(rules_file: Path) -> str:
    """CLAUDE.md contents, empty when absent."""
    if not rules_file.exists():
        return ""
    try:
        return rules_file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ContextLoadError(f"Cannot read rule file {rules_file}: {e}") from e


def load_context(skills_dir: Path, rules_file: Path) -> ContextInfo:
    """Load the skill catalog and rule set for a run."""
    skills = load_skills(skills_dir)
    rules = load_rules(rules_file)
    logger.debug(f"Loaded {len(skills)} skills, {len(rules)} chars of rules")
    return ContextInfo(skills=tuple(skills), rules=rules)


__all__ = [
    "ContextInfo",
    "ContextLoadError",
    "SkillInfo",
    "load_context",
    "load_rules",
    "load_skills",
    "parse_skill",
]
