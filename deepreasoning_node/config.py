"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

# Paths
KNOWLEDGE_BASE_PATH = Path(
    os.getenv("KNOWLEDGE_BASE_PATH", str(Path.home() / "Documents" / "knowledgeBase"))
).resolve()
VECTOR_CACHE_PATH = Path(
    os.getenv("VECTOR_CACHE_PATH", str(Path.cwd() / "storage.json"))
).resolve()

# Ollama configuration
OLLAMA_HOST = os.getenv("OLLAMA_HOST", "http://127.0.0.1:11434")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "deepseek-r1:7b")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "bge-m3")
OLLAMA_KEEP_ALIVE = os.getenv("OLLAMA_KEEP_ALIVE", "5m")
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "60.0"))

# Generation parameters
GENERATION_TEMPERATURE = float(os.getenv("GENERATION_TEMPERATURE", "0.6"))
GENERATION_NUM_CTX = int(os.getenv("GENERATION_NUM_CTX", "8192"))

# Per tool-call deadline in seconds (0 disables)
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "300"))

# RAG parameters (character-based, overlap must stay below chunk size)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "1000"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "200"))
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "5"))
INDEX_CONCURRENCY = int(os.getenv("INDEX_CONCURRENCY", "4"))
ALLOWED_EXTENSIONS = frozenset({".md", ".txt", ".pdf"})

# Transport
MAX_BODY_BYTES = int(os.getenv("MAX_BODY_BYTES", str(2 * 1024 * 1024)))
SSE_KEEPALIVE_SECONDS = float(os.getenv("SSE_KEEPALIVE_SECONDS", "15"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
