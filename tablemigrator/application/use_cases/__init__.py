from tablemigrator.application.use_cases.migration_pipeline import (
    MigrationOptions,
    MigrationPipeline,
    MigrationResult,
    PipelineState,
)

__all__ = ["MigrationOptions", "MigrationPipeline", "MigrationResult", "PipelineState"]
