from schemas.chunk import Chunk, EntryMetadata, StoreEntry, Match
from schemas.chat import Role, ChatMessage, ChatRequest
