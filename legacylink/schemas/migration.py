from pydantic import BaseModel, Field
from typing import List

# Structured payloads exchanged with the transform collaborator

class RawUnit(BaseModel):
    name: str
    code: str

class Decomposition(BaseModel):
    chunks: List[RawUnit] = []

class FieldMapping(BaseModel):
    legacy_field: str
    target_field: str
    target_type: str = ''
    note: str = ''

class TransformResult(BaseModel):
    candidate_source: str = Field(description='Complete target-language module source')
    business_rules: str = Field('', description='Plain-English summary of the business rules')
    field_mappings: List[FieldMapping] = []

class TestSuite(BaseModel):
    __test__ = False

    test_code: str = Field(description='Test module whose test functions start with test_')
    coverage_estimate: int = 0

class HealResult(BaseModel):
    candidate_source: str
    explanation: str = ''

# End-of-run report

class UnitReport(BaseModel):
    id: str
    name: str
    status: str
    verified: bool
    healing_attempts: int
    validation_runs: int
    passed: int
    failed: int
    coverage: int
    error: str | None = None

class MigrationReport(BaseModel):
    session_id: str
    session_status: str
    migration_status: str  # full|partial|blocked
    units_total: int = 0
    units_done: int = 0
    units_verified: int = 0
    units_error: int = 0
    progress: int = 0
    units: List[UnitReport] = []
    overall_plan: str | None = None
