"""Per-category metric records attached to every scope.

Each record is created fully populated with zero values, so readers never see
a partially initialized sub-object. Records are combined through their
``merge`` method, and every ``merge`` names its field-level policy:

- sum: counts and totals are added
- weighted: means are combined weighted by their sample counts
- max: high-water marks keep the larger value

The ``CategoryName`` enum is the key used by ``ScopeStore.category``.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, computed_field

from devloop.metrics.aggregates import (
    RunningStat,
    TimingTotals,
    TokenPair,
    merge_counts,
    safe_rate,
)


class CategoryName(str, Enum):
    """Metric categories tracked per scope."""

    TOKENS = "tokens"
    VALIDATION = "validation"
    FILE_FILTERING = "file_filtering"
    IPC = "ipc"
    SESSION = "session"
    SCHEMA = "schema_ops"
    TESTS = "tests"
    CONTRIBUTION = "contribution"


class TimingCategory(str, Enum):
    """Named timing breakdown categories."""

    JSON_PARSING = "json_parsing"
    FILE_FILTERING = "file_filtering"
    VALIDATION = "validation"
    IPC = "ipc"
    AI_FALLBACK = "ai_fallback"
    CONTEXT_BUILDING = "context_building"
    CODEBASE_SEARCH = "codebase_search"
    FILE_OPERATIONS = "file_operations"
    SESSION_MANAGEMENT = "session_management"


class TokenFeature(str, Enum):
    """Features token usage is attributed to."""

    CODE_GENERATION = "code_generation"
    AI_FALLBACK = "ai_fallback"
    RETRY = "retry"
    ERROR_ANALYSIS = "error_analysis"


# =============================================================================
# Records
# =============================================================================


class TokenBreakdown(BaseModel):
    """Token usage split by feature."""

    code_generation: TokenPair = Field(default_factory=TokenPair)
    ai_fallback: TokenPair = Field(default_factory=TokenPair)
    retry: TokenPair = Field(default_factory=TokenPair)
    error_analysis: TokenPair = Field(default_factory=TokenPair)

    def for_feature(self, feature: TokenFeature) -> TokenPair:
        pair: TokenPair = getattr(self, feature.value)
        return pair

    def merge(self, other: TokenBreakdown) -> None:
        """Sum every feature's token pair."""
        for feature in TokenFeature:
            self.for_feature(feature).merge(other.for_feature(feature))


class ValidationStats(BaseModel):
    """Pre/post validation outcomes."""

    pre_validations: int = 0
    pre_validation_failures: int = 0
    post_validations: int = 0
    post_validation_failures: int = 0
    errors_by_category: dict[str, int] = Field(default_factory=dict)
    recovery_suggestions: int = 0
    duration: TimingTotals = Field(default_factory=TimingTotals)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def failure_rate(self) -> float:
        failures = self.pre_validation_failures + self.post_validation_failures
        return safe_rate(failures, self.pre_validations + self.post_validations)

    def merge(self, other: ValidationStats) -> None:
        """Sum counts and per-category errors; weighted duration."""
        self.pre_validations += other.pre_validations
        self.pre_validation_failures += other.pre_validation_failures
        self.post_validations += other.post_validations
        self.post_validation_failures += other.post_validation_failures
        merge_counts(self.errors_by_category, other.errors_by_category)
        self.recovery_suggestions += other.recovery_suggestions
        self.duration.merge(other.duration)


class FileFilteringStats(BaseModel):
    """Outcomes of the file filter that guards generated changes."""

    files_filtered: int = 0
    files_allowed: int = 0
    predictive_filters: int = 0
    boundary_violations: int = 0
    filter_suggestions: int = 0
    duration: TimingTotals = Field(default_factory=TimingTotals)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def filter_rate(self) -> float:
        return safe_rate(self.files_filtered, self.files_filtered + self.files_allowed)

    def merge(self, other: FileFilteringStats) -> None:
        """Sum counts; weighted duration."""
        self.files_filtered += other.files_filtered
        self.files_allowed += other.files_allowed
        self.predictive_filters += other.predictive_filters
        self.boundary_violations += other.boundary_violations
        self.filter_suggestions += other.filter_suggestions
        self.duration.merge(other.duration)


class IpcStats(BaseModel):
    """IPC connection outcomes."""

    connections_attempted: int = 0
    connections_succeeded: int = 0
    connections_failed: int = 0
    health_checks: int = 0
    health_check_failures: int = 0
    retries: int = 0
    connection_time: TimingTotals = Field(default_factory=TimingTotals)
    retry_time: TimingTotals = Field(default_factory=TimingTotals)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def connection_success_rate(self) -> float:
        return safe_rate(self.connections_succeeded, self.connections_attempted)

    def merge(self, other: IpcStats) -> None:
        """Sum counts; weighted timings."""
        self.connections_attempted += other.connections_attempted
        self.connections_succeeded += other.connections_succeeded
        self.connections_failed += other.connections_failed
        self.health_checks += other.health_checks
        self.health_check_failures += other.health_check_failures
        self.retries += other.retries
        self.connection_time.merge(other.connection_time)
        self.retry_time.merge(other.retry_time)


class SessionStats(BaseModel):
    """Session lifecycle: creation, rotation, health and persistence."""

    sessions_started: int = 0
    rotations: int = 0
    expirations: int = 0
    health_checks: int = 0
    unhealthy: int = 0
    saves: int = 0
    save_failures: int = 0
    loads: int = 0
    load_failures: int = 0
    history_entries: RunningStat = Field(default_factory=RunningStat)
    persistence_time: TimingTotals = Field(default_factory=TimingTotals)

    def merge(self, other: SessionStats) -> None:
        """Sum counts; history entries keep weighted mean and max; weighted timing."""
        self.sessions_started += other.sessions_started
        self.rotations += other.rotations
        self.expirations += other.expirations
        self.health_checks += other.health_checks
        self.unhealthy += other.unhealthy
        self.saves += other.saves
        self.save_failures += other.save_failures
        self.loads += other.loads
        self.load_failures += other.load_failures
        self.history_entries.merge(other.history_entries)
        self.persistence_time.merge(other.persistence_time)


class SchemaStats(BaseModel):
    """Schema operations (parse, validate, generate) and their failures."""

    operations: int = 0
    successful: int = 0
    operations_by_type: dict[str, int] = Field(default_factory=dict)
    operations_by_schema_type: dict[str, int] = Field(default_factory=dict)
    errors_by_type: dict[str, int] = Field(default_factory=dict)
    duration: TimingTotals = Field(default_factory=TimingTotals)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success_rate(self) -> float:
        return safe_rate(self.successful, self.operations)

    def merge(self, other: SchemaStats) -> None:
        """Sum counts and per-type maps; weighted duration."""
        self.operations += other.operations
        self.successful += other.successful
        merge_counts(self.operations_by_type, other.operations_by_type)
        merge_counts(self.operations_by_schema_type, other.operations_by_schema_type)
        merge_counts(self.errors_by_type, other.errors_by_type)
        self.duration.merge(other.duration)


class TestStats(BaseModel):
    """Test run results."""

    __test__ = False

    total: int = 0
    passing: int = 0
    failing: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def pass_rate(self) -> float:
        return safe_rate(self.passing, self.total)

    def merge(self, other: TestStats) -> None:
        """Sum counts."""
        self.total += other.total
        self.passing += other.passing
        self.failing += other.failing


class ContributionStats(BaseModel):
    """Signals from the outer agent that fixes the dev-loop while it runs."""

    observations: int = 0
    fixes_applied: int = 0
    fixes_by_category: dict[str, int] = Field(default_factory=dict)
    root_cause_fixes: int = 0
    workaround_fixes: int = 0
    improvements_identified: int = 0
    longest_session_ms: float = 0.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def root_cause_rate(self) -> float:
        return safe_rate(self.root_cause_fixes, self.root_cause_fixes + self.workaround_fixes)

    def merge(self, other: ContributionStats) -> None:
        """Sum counts and categories; longest session keeps the max."""
        self.observations += other.observations
        self.fixes_applied += other.fixes_applied
        merge_counts(self.fixes_by_category, other.fixes_by_category)
        self.root_cause_fixes += other.root_cause_fixes
        self.workaround_fixes += other.workaround_fixes
        self.improvements_identified += other.improvements_identified
        self.longest_session_ms = max(self.longest_session_ms, other.longest_session_ms)


CategoryRecord = (
    TokenBreakdown
    | ValidationStats
    | FileFilteringStats
    | IpcStats
    | SessionStats
    | SchemaStats
    | TestStats
    | ContributionStats
)


class CategoryRecords(BaseModel):
    """All category records of one scope, always fully populated."""

    tokens: TokenBreakdown = Field(default_factory=TokenBreakdown)
    validation: ValidationStats = Field(default_factory=ValidationStats)
    file_filtering: FileFilteringStats = Field(default_factory=FileFilteringStats)
    ipc: IpcStats = Field(default_factory=IpcStats)
    session: SessionStats = Field(default_factory=SessionStats)
    schema_ops: SchemaStats = Field(default_factory=SchemaStats)
    tests: TestStats = Field(default_factory=TestStats)
    contribution: ContributionStats = Field(default_factory=ContributionStats)

    def get(self, name: CategoryName) -> CategoryRecord:
        """Return the record for ``name``."""
        record: CategoryRecord = getattr(self, name.value)
        return record

    def merge(self, other: CategoryRecords) -> None:
        """Merge every record with its own policy."""
        self.tokens.merge(other.tokens)
        self.validation.merge(other.validation)
        self.file_filtering.merge(other.file_filtering)
        self.ipc.merge(other.ipc)
        self.session.merge(other.session)
        self.schema_ops.merge(other.schema_ops)
        self.tests.merge(other.tests)
        self.contribution.merge(other.contribution)
