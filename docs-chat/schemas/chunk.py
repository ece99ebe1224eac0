"""Pydantic models for indexed chunks, store entries and similarity matches."""

from pydantic import BaseModel, Field
from typing import List


class Chunk(BaseModel):
    id: str = Field(description="Sanitized '{relative_path}-{ordinal}'")
    text: str = Field(description="Bounded-length slice of the source document")
    source_path: str = Field(description="Document path relative to the source base, '/'-separated")
    ordinal: int = Field(ge=0, description="Position of the chunk within its document")


class EntryMetadata(BaseModel):
    text: str
    source: str


class StoreEntry(BaseModel):
    id: str
    vector: List[float]
    metadata: EntryMetadata

    @classmethod
    def from_chunk(cls, chunk: Chunk, vector: List[float]) -> "StoreEntry":
        return cls(
            id=chunk.id,
            vector=vector,
            metadata=EntryMetadata(text=chunk.text, source=chunk.source_path),
        )


class Match(BaseModel):
    id: str
    score: float = Field(description="Similarity, higher = more relevant")
    metadata: dict = Field(default_factory=dict)
