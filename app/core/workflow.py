from enum import Enum

class PipelineStage(str, Enum):
    CONTEXT_GATHER = "context_gather"
    INTENT_PARSE = "intent_parse"
    PATCH_PLAN = "patch_plan"
    CODE_GENERATE = "code_generate"
    VALIDATE_REPAIR = "validate_repair"
    DEPLOY = "deploy"

    def __str__(self) -> str:
        return self.value

class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value

class DeploymentStatus(str, Enum):
    PENDING = "pending"
    CONTRACTS_DEPLOYING = "contracts-deploying"
    BUILDING = "building"
    COMPLETED = "completed"
    FAILED = "failed"
