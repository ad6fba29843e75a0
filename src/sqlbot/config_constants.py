from enum import Enum
from langchain_postgres.vectorstores import DistanceStrategy


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class VectorBackend(str, Enum):
    PGVECTOR = "pgvector"
    MEMORY = "memory"


DEEPSEEK_API_URL = "https://api.deepseek.com"
ZHIPU_API_URL = "https://open.bigmodel.cn/api/paas/v4"

# Alias -> concrete model id, editable at runtime through ConfigService
DEFAULT_MODEL_MAP = {
    "DeepSeek": "deepseek-chat",
    "GPT-3.5": "gpt-3.5-turbo",
    "GPT-4": "gpt-4-turbo",
}

# Hard per-request item limit of the embedding provider
EMBEDDING_BATCH_LIMIT = 64

# -------------------------
# Vector Store Constants
# -------------------------

# pgvector operator classes for CREATE INDEX ... USING hnsw
PGVECTOR_OPS_MAP = {
    DistanceStrategy.COSINE: "vector_cosine_ops",
    DistanceStrategy.EUCLIDEAN: "vector_l2_ops",
    DistanceStrategy.MAX_INNER_PRODUCT: "vector_ip_ops",
}

# Distance operators matching PGVECTOR_OPS_MAP
PGVECTOR_DISTANCE_OPERATORS = {
    DistanceStrategy.COSINE: "<=>",
    DistanceStrategy.EUCLIDEAN: "<->",
    DistanceStrategy.MAX_INNER_PRODUCT: "<#>",
}

# -------------------------
# Prompt Context Placeholders
# -------------------------

NO_SCHEMA_PLACEHOLDER = "(no relevant table schema found)"
SCHEMA_DISABLED_PLACEHOLDER = "(retrieval disabled, schema not retrieved)"
NO_EXAMPLES_PLACEHOLDER = "(no reference examples)"
EXAMPLES_DISABLED_PLACEHOLDER = "(retrieval disabled)"
NO_GLOSSARY_PLACEHOLDER = "(no specific business terms)"
NO_HISTORY_PLACEHOLDER = "(no previous conversation)"

SCHEMA_DOC_SEPARATOR = "\n---\n"

DEFAULT_SUGGESTIONS = (
    "What is the trend over time?",
    "Can this be compared month by month?",
    "What explains the outliers?",
)

# Prompt sent by the LLM connection test
CONNECTION_TEST_PROMPT = "Reply with the single word OK."
