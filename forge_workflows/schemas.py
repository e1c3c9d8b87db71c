# forge_workflows/schemas.py
"""
Records exchanged with the collaborator and between pipeline steps.

All records serialize with camelCase keys (``repoPath``, ``toolCallCount``)
and accept either spelling on input. Analysis records carry a
``fallback()`` constructor: the minimal valid value used when the
collaborator cannot produce one.
"""
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from forge_engine.normalization import (
    CommentLevel,
    Complexity,
    Maintainability,
    Maturity,
    PackageType,
    RepositoryType,
)
from forge_workflows.context import ContextData

Priority = Literal["high", "medium", "low"]

DEFAULT_IGNORED_PATHS = ["node_modules", ".git", "build", "dist", ".next", ".venv", "target"]


class Record(BaseModel):
    """Base for every wire record (camelCase aliases, extra keys ignored)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Repository analysis ──────────────────────────────────────────────────────

class GitStatus(Record):
    is_git_repo: bool = False
    default_branch: str | None = None
    last_commit: str | None = None
    has_remote: bool = False
    is_dirty: bool = False


class PackageInfo(Record):
    path: str = "."
    name: str | None = None
    type: PackageType = "unknown"
    language: str | None = None


class RepoStructure(Record):
    packages: list[PackageInfo] = Field(default_factory=list)
    key_directories: list[str] = Field(default_factory=list)
    ignored_paths: list[str] = Field(default_factory=list)


class LanguageStats(Record):
    language: str
    percentage: float = 0.0
    file_count: int = 0
    main_files: list[str] = Field(default_factory=list)


class RepositoryAnalysis(Record):
    type: RepositoryType
    root_path: str = "."
    git_status: GitStatus = Field(default_factory=GitStatus)
    structure: RepoStructure = Field(default_factory=RepoStructure)
    languages: list[LanguageStats] = Field(default_factory=list)

    @classmethod
    def fallback(cls, root_path: str = ".") -> "RepositoryAnalysis":
        return cls(
            type="single-package",
            root_path=root_path,
            git_status=GitStatus(is_git_repo=True, has_remote=True),
            structure=RepoStructure(
                packages=[PackageInfo(path=".", type="unknown")],
                key_directories=[],
                ignored_paths=list(DEFAULT_IGNORED_PATHS),
            ),
            languages=[],
        )


# ── Codebase analysis ────────────────────────────────────────────────────────

class MainModule(Record):
    path: str
    purpose: str = ""


class InternalDependency(Record):
    from_: str = Field(alias="from")
    to: str
    type: str = "import"


class KeyLibrary(Record):
    name: str
    purpose: str = ""
    version: str | None = None


class Dependencies(Record):
    internal: list[InternalDependency] = Field(default_factory=list)
    external: dict[str, str] = Field(default_factory=dict)
    key_libraries: list[KeyLibrary] = Field(default_factory=list)


class Architecture(Record):
    pattern: str
    entry_points: list[str] = Field(default_factory=list)
    main_modules: list[MainModule] = Field(default_factory=list)
    dependencies: Dependencies = Field(default_factory=Dependencies)


class Documentation(Record):
    has_readme: bool = False
    has_api_docs: bool = False
    code_comments: CommentLevel = "none"


class CodeQuality(Record):
    has_tests: bool = False
    test_coverage: str | None = None
    linting: list[str] = Field(default_factory=list)
    formatting: list[str] = Field(default_factory=list)
    documentation: Documentation = Field(default_factory=Documentation)


class Framework(Record):
    name: str
    version: str | None = None
    purpose: str = ""
    config_files: list[str] = Field(default_factory=list)


class CodebaseAnalysis(Record):
    architecture: Architecture
    code_quality: CodeQuality = Field(default_factory=CodeQuality)
    frameworks: list[Framework] = Field(default_factory=list)

    @classmethod
    def fallback(cls) -> "CodebaseAnalysis":
        return cls(architecture=Architecture(pattern="unknown"))


# ── Build and deployment analysis ────────────────────────────────────────────

class BuildAttempt(Record):
    command: str
    success: bool = False
    output: str = ""
    issues: list[str] = Field(default_factory=list)


class BuildSystem(Record):
    type: str | None = None
    config_files: list[str] = Field(default_factory=list)
    build_commands: list[str] = Field(default_factory=list)
    build_attempts: list[BuildAttempt] = Field(default_factory=list)


class PackageManagement(Record):
    managers: list[str] = Field(default_factory=list)
    lock_files: list[str] = Field(default_factory=list)
    workspace_config: str | None = None


class TestAttempt(Record):
    __test__ = False

    command: str
    success: bool = False
    output: str = ""


class Testing(Record):
    __test__ = False

    frameworks: list[str] = Field(default_factory=list)
    test_dirs: list[str] = Field(default_factory=list)
    test_commands: list[str] = Field(default_factory=list)
    test_attempts: list[TestAttempt] = Field(default_factory=list)


class EnvironmentConfig(Record):
    env_files: list[str] = Field(default_factory=list)
    required_vars: list[str] = Field(default_factory=list)


class Deployment(Record):
    cicd: list[str] = Field(default_factory=list)
    dockerfiles: list[str] = Field(default_factory=list)
    deployment_configs: list[str] = Field(default_factory=list)
    environment_config: EnvironmentConfig = Field(default_factory=EnvironmentConfig)


class BuildDeployAnalysis(Record):
    build_system: BuildSystem = Field(default_factory=BuildSystem)
    package_management: PackageManagement = Field(default_factory=PackageManagement)
    testing: Testing = Field(default_factory=Testing)
    deployment: Deployment = Field(default_factory=Deployment)

    @classmethod
    def fallback(cls) -> "BuildDeployAnalysis":
        return cls(build_system=BuildSystem(type="unknown"))


# ── Synthesis ────────────────────────────────────────────────────────────────

class StrengthsWeaknesses(Record):
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)


class Insights(Record):
    complexity: Complexity
    maturity: Maturity
    maintainability: Maintainability
    recommendations: list[str] = Field(default_factory=list)
    potential_issues: list[str] = Field(default_factory=list)
    strengths_weaknesses: StrengthsWeaknesses = Field(default_factory=StrengthsWeaknesses)

    @classmethod
    def fallback(cls) -> "Insights":
        return cls(
            complexity="moderate",
            maturity="development",
            maintainability="fair",
            recommendations=["Review the repository manually; automated synthesis was unavailable"],
        )


class Confidence(Record):
    repository: float = Field(ge=0.0, le=1.0)
    codebase: float = Field(ge=0.0, le=1.0)
    build_deploy: float = Field(ge=0.0, le=1.0)
    overall: float = Field(ge=0.0, le=1.0)

    @classmethod
    def fallback(cls) -> "Confidence":
        return cls(repository=0.3, codebase=0.2, build_deploy=0.2, overall=0.2)


class SynthesisResponse(Record):
    """What the collaborator returns when synthesizing context."""
    insights: Insights
    confidence: Confidence
    executive_summary: str


class RepoContext(Record):
    repository: RepositoryAnalysis
    codebase: CodebaseAnalysis
    build_deploy: BuildDeployAnalysis
    insights: Insights
    confidence: Confidence
    executive_summary: str

    @classmethod
    def fallback_summary(cls) -> str:
        return (
            "Automated context synthesis was unavailable; this summary is based on "
            "partial repository analysis and should be treated as low confidence."
        )


# ── Test generation ──────────────────────────────────────────────────────────

class SourceModule(Record):
    module_path: str
    source_files: list[str] = Field(default_factory=list)
    priority: Priority = "medium"
    language: str = "unknown"


class RepoTestAnalysis(Record):
    source_modules: list[SourceModule] = Field(default_factory=list)
    testing_framework: str = "unknown"
    test_directory: str = "tests"
    total_files: int = 0


class FunctionTestSpec(Record):
    name: str
    test_cases: list[str] = Field(default_factory=list)


class TestSpecification(Record):
    __test__ = False

    source_file: str
    functions: list[FunctionTestSpec] = Field(default_factory=list)


class TestPlan(Record):
    """Analysis plus per-file specifications; persisted as agent.plan.json."""
    __test__ = False

    analysis: RepoTestAnalysis = Field(default_factory=RepoTestAnalysis)
    specs: list[TestSpecification] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.specs and not self.analysis.source_modules


class TestFileResult(Record):
    __test__ = False

    source_file: str
    test_file: str
    functions_count: int = 0
    test_cases_count: int = 0
    success: bool = False
    error: str | None = None


class TestGenerationSummary(Record):
    __test__ = False

    total_source_files: int = 0
    total_test_files: int = 0
    total_functions: int = 0
    total_test_cases: int = 0
    successful_files: int = 0
    failed_files: int = 0

    @classmethod
    def from_files(cls, files: list[TestFileResult]) -> "TestGenerationSummary":
        ok = [f for f in files if f.success]
        return cls(
            total_source_files=len({f.source_file for f in files}),
            total_test_files=len(ok),
            total_functions=sum(f.functions_count for f in ok),
            total_test_cases=sum(f.test_cases_count for f in ok),
            successful_files=len(ok),
            failed_files=len(files) - len(ok),
        )


class TestQuality(Record):
    __test__ = False

    syntax_valid: bool = False
    follows_best_practices: bool = False
    coverage_score: float = Field(default=0.0, ge=0.0, le=100.0)


class TestGenerationResult(Record):
    __test__ = False

    test_files: list[TestFileResult] = Field(default_factory=list)
    summary: TestGenerationSummary = Field(default_factory=TestGenerationSummary)
    quality: TestQuality = Field(default_factory=TestQuality)


# ── Coverage ─────────────────────────────────────────────────────────────────

class CoverageMetric(Record):
    total: int = 0
    covered: int = 0
    pct: float = 0.0


class CoverageStats(Record):
    statements: CoverageMetric = Field(default_factory=CoverageMetric)
    branches: CoverageMetric = Field(default_factory=CoverageMetric)
    functions: CoverageMetric = Field(default_factory=CoverageMetric)
    lines: CoverageMetric = Field(default_factory=CoverageMetric)

    @classmethod
    def from_ratio(cls, coverage: float) -> "CoverageStats":
        pct = round(coverage * 100, 2)
        return cls(statements=CoverageMetric(pct=pct), lines=CoverageMetric(pct=pct))


class CoverageReport(Record):
    """What the collaborator returns after running the suite."""
    is_valid: bool = True
    repo_path: str = ""
    language: str = "unknown"
    framework: str = "unknown"
    coverage: float = 0.0
    method: str = "algorithmic"
    stats: CoverageStats | None = None
    files: int = 0
    reason: str | None = None


class TechStackItem(Record):
    title: str
    description: str = ""
    icon: str | None = None


class DescriptionResponse(Record):
    description: str


class TechStackResponse(Record):
    tech_stack: list[TechStackItem] = Field(default_factory=list)


class PrPlan(Record):
    """Optional collaborator suggestion for branch and commit naming."""
    base_branch: str | None = None
    branch_name: str | None = None
    commit_message: str | None = None
    repo_owner: str | None = None
    repo_name: str | None = None


# ── Step records ─────────────────────────────────────────────────────────────

class PipelineInput(Record):
    context_data: ContextData | None = None
    repository_url: str | None = None
    project_id: str


class StepOutcome(Record):
    result: str
    success: bool
    tool_call_count: int


class DockerOutput(StepOutcome):
    container_id: str
    context_data: ContextData | None = None
    repository_url: str | None = None
    project_id: str


class CloneOutput(DockerOutput):
    repo_path: str


class ContextSavedOutput(CloneOutput):
    context_path: str


class PipelineOutputDraft(Record):
    """Whatever the last phase produced; normalized into ``PipelineOutput``."""
    result: str | None = None
    success: bool | None = None
    tool_call_count: int | None = None
    container_id: str | None = None
    context_path: str | None = None
    project_id: str
    pr_url: str | None = None


class PipelineOutput(Record):
    result: str
    success: bool
    tool_call_count: int
    container_id: str
    context_path: str | None = None
    project_id: str
    pr_url: str

    @classmethod
    def from_draft(cls, draft: PipelineOutputDraft | dict[str, Any]) -> "PipelineOutput":
        if isinstance(draft, dict):
            draft = PipelineOutputDraft.model_validate(draft)
        return cls(
            result=draft.result or "Pipeline completed",
            success=True if draft.success is None else draft.success,
            tool_call_count=draft.tool_call_count or 0,
            container_id=draft.container_id or "",
            context_path=draft.context_path,
            project_id=draft.project_id,
            pr_url=draft.pr_url or "",
        )
