"""Configuration management for the knowledge-augmented assistant."""
import os
import logging
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent

# API Keys
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_ASSISTANT_ID = os.getenv("OPENAI_ASSISTANT_ID")
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
HUGGINGFACE_API_KEY = os.getenv("HUGGINGFACE_API_KEY")

# Server Configuration
PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # "text" or "json"

# CORS Configuration
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173"
).split(",")

# Provider Configuration
ASSISTANT_API_BASE_URL = os.getenv("ASSISTANT_API_BASE_URL", "https://api.openai.com/v1")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "sentence-transformers/all-mpnet-base-v2")
COMPLETION_MODEL = os.getenv("COMPLETION_MODEL", "llama-3.1-8b-instant")

# Knowledge Graph Artifacts
NODE_EMBEDDINGS_PATH = os.getenv(
    "NODE_EMBEDDINGS_PATH", str(BASE_DIR / "data" / "node_embeddings.json")
)
NODE_NAMES_PATH = os.getenv(
    "NODE_NAMES_PATH", str(BASE_DIR / "data" / "node_names.txt")
)

# Run Polling Configuration
POLL_INTERVAL_SECONDS = 1.0
RUN_TIMEOUT_SECONDS = 30.0
MAX_RETRIES = 3
RETRY_BASE_DELAY_SECONDS = 2.0  # doubled on every retry

# Streaming Configuration
CHUNK_SIZE_WORDS = 10
CHUNK_DELAY_SECONDS = 0.05

# Retrieval Configuration
RETRIEVAL_TOP_K = 5
KNOWLEDGE_SYNTHESIS_ENABLED = os.getenv("KNOWLEDGE_SYNTHESIS_ENABLED", "false").lower() == "true"

# Logging Configuration
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
