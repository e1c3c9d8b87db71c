# forge_workflows/heuristics.py
"""
Static fallbacks used when the collaborator cannot describe a project.

Pure functions over data already read from the sandbox, so they can be
tested without docker.
"""
import json
import re
from collections import Counter
from pathlib import PurePosixPath
from typing import Any

from forge_workflows.schemas import TechStackItem

README_CANDIDATES = ("README", "README.md", "README.rst", "README.txt", "readme.md", "Readme.md")

MAX_DESCRIPTION_CHARS = 600
MAX_STACK_ITEMS = 20

LANGUAGE_BY_EXTENSION = {
    ".py": "Python",
    ".ts": "TypeScript",
    ".tsx": "TypeScript",
    ".js": "JavaScript",
    ".jsx": "JavaScript",
    ".go": "Go",
    ".rs": "Rust",
    ".java": "Java",
    ".kt": "Kotlin",
    ".rb": "Ruby",
    ".php": "PHP",
    ".cs": "C#",
    ".cpp": "C++",
    ".c": "C",
    ".swift": "Swift",
}

FEATURE_FILES = {
    "Dockerfile": "Docker",
    "docker-compose.yml": "Docker Compose",
    "next.config.js": "Next.js",
    "tailwind.config.js": "Tailwind CSS",
    "vite.config.ts": "Vite",
    "jest.config.js": "Jest",
    "vitest.config.ts": "Vitest",
    "prisma/schema.prisma": "Prisma",
    "pyproject.toml": "Python packaging",
    "go.mod": "Go modules",
    "Cargo.toml": "Cargo",
}

PACKAGE_TECH = {
    "react": ("React", "UI library"),
    "next": ("Next.js", "React framework"),
    "vue": ("Vue", "UI framework"),
    "svelte": ("Svelte", "UI framework"),
    "express": ("Express", "HTTP server framework"),
    "fastify": ("Fastify", "HTTP server framework"),
    "typescript": ("TypeScript", "Typed JavaScript"),
    "vitest": ("Vitest", "Test runner"),
    "jest": ("Jest", "Test runner"),
    "prisma": ("Prisma", "Database ORM"),
    "tailwindcss": ("Tailwind CSS", "Utility-first CSS"),
}

_IMAGE_LINE = re.compile(r"!\[[^\]]*\]\([^)]*\)")


def parse_manifest(text: str) -> dict[str, Any] | None:
    """``package.json`` content as a dict, or None."""
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    return data if isinstance(data, dict) else None


def languages_from_files(files: list[str], limit: int = 3) -> list[str]:
    counts = Counter(
        LANGUAGE_BY_EXTENSION[PurePosixPath(f).suffix]
        for f in files
        if PurePosixPath(f).suffix in LANGUAGE_BY_EXTENSION
    )
    return [lang for lang, _ in counts.most_common(limit)]


def features_from_files(files: list[str]) -> list[str]:
    present = {f.lstrip("./") for f in files}
    return [feature for path, feature in FEATURE_FILES.items() if path in present]


def synthesize_description(
    repo_name: str,
    *,
    about: str = "",
    readme: str = "",
    manifest: dict[str, Any] | None = None,
    languages: list[str] | None = None,
    features: list[str] | None = None,
    topics: list[str] | None = None,
) -> str:
    """One-paragraph description from whatever metadata is available."""
    primary = about or (manifest or {}).get("description") or ""
    if primary:
        text = primary.strip()
    elif readme:
        cleaned = "\n".join(line for line in readme.splitlines() if not _IMAGE_LINE.search(line))
        paras = [
            re.sub(r"^#+\s*", "", p).strip()
            for p in re.split(r"\n\s*\n", cleaned)
        ]
        paras = [p for p in paras if p]
        # First paragraph is usually just the title
        text = (paras[1] if len(paras) > 1 else paras[0] if paras else f"Repository {repo_name}")
        text = text[:MAX_DESCRIPTION_CHARS]
    else:
        langs = ", ".join((languages or [])[:3])
        first = f"A {langs} codebase." if langs else "A software project."
        parts = [first]
        if features:
            parts.append(f"Includes {', '.join(features[:3])}.")
        if topics:
            parts.append(f"Topics: {', '.join(topics[:3])}.")
        text = " ".join(parts)
    return re.sub(r"\s+", " ", text).strip()


def detect_stack(
    files: list[str],
    manifest: dict[str, Any] | None = None,
    *,
    github_language: str = "",
    topics: list[str] | None = None,
) -> list[TechStackItem]:
    """Technology list from file names, ``package.json`` deps and GitHub metadata."""
    items: list[TechStackItem] = []
    if github_language:
        items.append(TechStackItem(title=github_language, description="Primary language"))
    for topic in topics or []:
        items.append(TechStackItem(title=topic, description="Repository topic"))
    for language in languages_from_files(files, limit=5):
        items.append(TechStackItem(title=language, description="Programming language"))
    for feature in features_from_files(files):
        items.append(TechStackItem(title=feature, description="Detected from project files"))

    deps: dict[str, Any] = {}
    for key in ("dependencies", "devDependencies"):
        deps.update((manifest or {}).get(key) or {})
    for name, (title, description) in PACKAGE_TECH.items():
        if name in deps:
            items.append(TechStackItem(title=title, description=description))

    return dedupe_stack(items)


def dedupe_stack(items: list[TechStackItem]) -> list[TechStackItem]:
    """Drop case-insensitive duplicate titles, keep order, cap the list."""
    seen: set[str] = set()
    unique: list[TechStackItem] = []
    for item in items:
        key = item.title.strip().lower()
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique[:MAX_STACK_ITEMS]
