# forge_workflows/prompts.py
"""Instructions and prompt builders for the collaborator roles."""
import json
from typing import Any

JSON_ONLY = (
    "Reply with a single JSON object and nothing else. Use the exact enum "
    "spellings given. Do not wrap the JSON in prose."
)

INSTRUCTIONS: dict[str, str] = {
    "context": (
        "You are a repository analyst working inside a docker sandbox. Use the "
        "docker_exec tool to inspect files, run read-only commands and report "
        "facts you verified. " + JSON_ONLY
    ),
    "description": (
        "You write short, factual product descriptions of software repositories "
        "after inspecting them with docker_exec. " + JSON_ONLY
    ),
    "unit_test": (
        "You are a senior engineer writing focused, deterministic unit tests. Use "
        "docker_exec to read sources and write test files. " + JSON_ONLY
    ),
    "github_pr": (
        "You prepare git branches and commit messages for automated pull requests. "
        "Use docker_exec for read-only git inspection. " + JSON_ONLY
    ),
    "coverage": (
        "You measure unit-test coverage of a repository inside a docker sandbox "
        "using docker_exec. " + JSON_ONLY
    ),
}


def _shape(example: dict[str, Any]) -> str:
    return json.dumps(example, indent=2)


def repository_analysis(container_id: str, repo_path: str) -> str:
    return f"""Analyze the repository structure.
containerId='{container_id}'. Repository path='{repo_path}'.

Inspect git status, packages (manifests such as package.json, pyproject.toml,
go.mod, Cargo.toml), key directories and language distribution.

type must be one of: monorepo, single-package, multi-project.
packages[].type must be one of: app, library, tool, config, unknown.

Return:
{_shape({
    "type": "single-package",
    "rootPath": repo_path,
    "gitStatus": {"isGitRepo": True, "defaultBranch": "main", "lastCommit": "abc123",
                  "hasRemote": True, "isDirty": False},
    "structure": {"packages": [{"path": ".", "name": "pkg", "type": "library", "language": "Python"}],
                  "keyDirectories": ["src"], "ignoredPaths": ["node_modules", ".git"]},
    "languages": [{"language": "Python", "percentage": 90, "fileCount": 40, "mainFiles": ["src/main.py"]}],
})}"""


def codebase_analysis(container_id: str, repo_path: str) -> str:
    return f"""Analyze the codebase architecture and quality.
containerId='{container_id}'. Repository path='{repo_path}'.

documentation.codeComments must be one of: extensive, moderate, minimal, none.

Return:
{_shape({
    "architecture": {
        "pattern": "layered",
        "entryPoints": ["src/main.py"],
        "mainModules": [{"path": "src/core", "purpose": "domain logic"}],
        "dependencies": {"internal": [{"from": "src/api", "to": "src/core", "type": "import"}],
                         "external": {"httpx": "^0.27"},
                         "keyLibraries": [{"name": "httpx", "purpose": "HTTP client"}]},
    },
    "codeQuality": {"hasTests": True, "linting": ["ruff"], "formatting": ["black"],
                    "documentation": {"hasReadme": True, "hasApiDocs": False, "codeComments": "moderate"}},
    "frameworks": [{"name": "FastAPI", "purpose": "web API", "configFiles": []}],
})}"""


def build_deployment_analysis(container_id: str, repo_path: str) -> str:
    return f"""Analyze how the repository is built, tested and deployed.
containerId='{container_id}'. Repository path='{repo_path}'.
You may attempt build and test commands; record each attempt honestly.

Return:
{_shape({
    "buildSystem": {"type": "npm", "configFiles": ["package.json"], "buildCommands": ["npm run build"],
                    "buildAttempts": [{"command": "npm run build", "success": True, "output": "", "issues": []}]},
    "packageManagement": {"managers": ["npm"], "lockFiles": ["package-lock.json"]},
    "testing": {"frameworks": ["vitest"], "testDirs": ["tests"], "testCommands": ["npm test"],
                "testAttempts": [{"command": "npm test", "success": True, "output": ""}]},
    "deployment": {"cicd": [".github/workflows/ci.yml"], "dockerfiles": ["Dockerfile"],
                   "deploymentConfigs": [], "environmentConfig": {"envFiles": [".env.example"],
                                                                  "requiredVars": ["DATABASE_URL"]}},
})}"""


def synthesis(repository: dict, codebase: dict, build_deploy: dict) -> str:
    return f"""Synthesize the three analyses below into insights.

complexity: simple | moderate | complex | very-complex
maturity: prototype | development | production | mature
maintainability: excellent | good | fair | poor
confidence values are between 0 and 1.

Repository analysis:
{json.dumps(repository, indent=2)}

Codebase analysis:
{json.dumps(codebase, indent=2)}

Build and deployment analysis:
{json.dumps(build_deploy, indent=2)}

Return:
{_shape({
    "insights": {"complexity": "moderate", "maturity": "development", "maintainability": "good",
                 "recommendations": ["..."], "potentialIssues": ["..."],
                 "strengthsWeaknesses": {"strengths": ["..."], "weaknesses": ["..."]}},
    "confidence": {"repository": 0.8, "codebase": 0.7, "buildDeploy": 0.6, "overall": 0.7},
    "executiveSummary": "Two or three sentences.",
})}"""


def project_description(container_id: str, repo_path: str, hints: dict[str, Any]) -> str:
    return f"""Describe this project in two or three sentences for a dashboard.
containerId='{container_id}'. Repository path='{repo_path}'.
Known metadata: {json.dumps(hints)}

Return: {{"description": "..."}}"""


def project_stack(container_id: str, repo_path: str) -> str:
    return f"""List the technologies this project is built with (at most 20).
containerId='{container_id}'. Repository path='{repo_path}'.

Return: {{"techStack": [{{"title": "React", "description": "UI library", "icon": null}}]}}"""


def test_plan(container_id: str, repo_path: str, context_path: str) -> str:
    return f"""Plan unit tests for this repository.
containerId='{container_id}'. Repository path='{repo_path}'.
Read the saved analysis at '{context_path}' first.

Pick the highest-value source modules (priority high | medium | low) and, for
each source file, the functions to test with concrete test cases.

Return:
{_shape({
    "analysis": {"sourceModules": [{"modulePath": "src/utils", "sourceFiles": ["src/utils/math.ts"],
                                    "priority": "high", "language": "TypeScript"}],
                 "testingFramework": "vitest", "testDirectory": "tests", "totalFiles": 1},
    "specs": [{"sourceFile": "src/utils/math.ts",
               "functions": [{"name": "add", "testCases": ["adds two positives"]}]}],
})}"""


def test_generation(container_id: str, repo_path: str, plan: dict) -> str:
    return f"""Write the unit tests described by this plan.
containerId='{container_id}'. Repository path='{repo_path}'.
Create each test file with docker_exec, then check its syntax.

Plan:
{json.dumps(plan, indent=2)}

Return:
{_shape({
    "testFiles": [{"sourceFile": "src/utils/math.ts", "testFile": "tests/utils/math.test.ts",
                   "functionsCount": 1, "testCasesCount": 3, "success": True}],
    "summary": {"totalSourceFiles": 1, "totalTestFiles": 1, "totalFunctions": 1,
                "totalTestCases": 3, "successfulFiles": 1, "failedFiles": 0},
    "quality": {"syntaxValid": True, "followsBestPractices": True, "coverageScore": 60},
})}"""


def pr_plan(container_id: str, repo_path: str, base_branch: str) -> str:
    return f"""Suggest a branch name and commit message for the new unit tests.
containerId='{container_id}'. Repository path='{repo_path}'. Detected base branch='{base_branch}'.

Return: {{"baseBranch": "{base_branch}", "branchName": "testforge/unit-tests-...", "commitMessage": "...", "repoOwner": "...", "repoName": "..."}}"""


def coverage(container_id: str, repo_path: str) -> str:
    return f"""Measure unit-test coverage.
containerId='{container_id}'. Repository path hint='{repo_path}'.

Install dependencies if needed and run the project's test suite with coverage.
If no coverage tool works, estimate algorithmically:
coverage = min(1.0, test_files / max(source_files, 1) * 2.5).
coverage is a ratio between 0 and 1; method is json | xml | stdout | algorithmic.

Return:
{_shape({
    "isValid": True, "repoPath": repo_path, "language": "TypeScript", "framework": "vitest",
    "coverage": 0.42, "method": "json", "files": 12,
    "stats": {"statements": {"total": 100, "covered": 42, "pct": 42},
              "branches": {"total": 10, "covered": 4, "pct": 40},
              "functions": {"total": 20, "covered": 9, "pct": 45},
              "lines": {"total": 100, "covered": 42, "pct": 42}},
})}"""
