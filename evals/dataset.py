"""Evaluation dataset schema, sink-backed dataset store and file loader."""

from typing import Dict, List, Any, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from enum import Enum
import json
import logging
import re

from core.values import utc_now
from tracing.sinks import Sink

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"^(?P<base>.+)-v(?P<version>\d+)$")


class DifficultyLevel(str, Enum):
    """Difficulty levels for dataset items."""
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class DatasetItemMetadata(BaseModel):
    """Conventional metadata keys for a dataset item. Unknown keys are kept."""

    model_config = ConfigDict(extra="allow")

    difficulty: Optional[DifficultyLevel] = None
    category: Optional[str] = None
    source: Optional[str] = None
    validated_by: Optional[str] = None
    validated_at: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class DatasetItem(BaseModel):
    """One labeled test case."""

    input: Any = Field(..., description="Payload passed to the function under test")
    expected_output: Optional[Any] = Field(None, description="Reference output for accuracy-style metrics")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def validate_metadata(cls, v):
        """Normalise conventional keys while keeping the bag open."""
        if v is None:
            return {}
        if isinstance(v, DatasetItemMetadata):
            v = v.model_dump(exclude_none=True, mode="json")
        return dict(v)

    @property
    def tags(self) -> List[str]:
        return list(self.metadata.get("tags") or [])


class Dataset(BaseModel):
    """Named, ordered collection of dataset items."""

    name: str = Field(..., description="Unique name of the dataset")
    description: str = ""
    items: List[DatasetItem] = Field(default_factory=list)
    id: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        """Ensure the dataset name is not empty."""
        if not v.strip():
            raise ValueError("Dataset name cannot be empty")
        return v.strip()

    def __len__(self) -> int:
        return len(self.items)

    def head(self, max_cases: Optional[int] = None) -> List[DatasetItem]:
        """First ``max_cases`` items in dataset order."""
        if max_cases is None:
            return list(self.items)
        return list(self.items[:max(0, max_cases)])

    def filter_by_tags(self, tags: List[str]) -> List[DatasetItem]:
        """Items that have any of the specified tags."""
        tag_set = set(tags)
        return [item for item in self.items if any(tag in tag_set for tag in item.tags)]

    def stats(self) -> Dict[str, Any]:
        """Counts by difficulty and category."""
        difficulty_counts: Dict[str, int] = {}
        category_counts: Dict[str, int] = {}
        for item in self.items:
            difficulty = item.metadata.get("difficulty")
            if difficulty:
                difficulty_counts[difficulty] = difficulty_counts.get(difficulty, 0) + 1
            category = item.metadata.get("category")
            if category:
                category_counts[category] = category_counts.get(category, 0) + 1

        return {
            "total_items": len(self.items),
            "difficulty_distribution": difficulty_counts,
            "category_distribution": category_counts,
            "items_with_expected_output": sum(1 for item in self.items if item.expected_output is not None),
        }


def next_version_name(name: str) -> str:
    """Conventional name of the next dataset version (``x`` -> ``x-v2`` -> ``x-v3``)."""
    match = _VERSION_RE.match(name)
    if match:
        return f"{match.group('base')}-v{int(match.group('version')) + 1}"
    return f"{name}-v2"


class DatasetStore:
    """Create, append to, fetch and delete named datasets on a sink.

    Datasets are append-only; correcting an item means publishing a new
    version under ``next_version_name``.
    """

    def __init__(self, sink: Sink):
        self.sink = sink

    async def create(self, name: str, description: str = "") -> str:
        dataset_id = await self.sink.create_dataset(name, description)
        logger.info(f"Created dataset: {name}")
        return dataset_id

    async def add_items(self, name: str, items: List[DatasetItem]) -> int:
        payload = [
            {
                "input": item.input,
                "expected_output": item.expected_output,
                "metadata": item.metadata,
            }
            for item in (i if isinstance(i, DatasetItem) else DatasetItem(**i) for i in items)
        ]
        count = await self.sink.add_dataset_items(name, payload)
        logger.info(f"Added {count} items to dataset: {name}")
        return count

    async def get(self, name: str) -> Dataset:
        data = await self.sink.get_dataset(name)
        dataset = Dataset(
            id=data.get("id"),
            name=data.get("name") or name,
            description=data.get("description") or "",
            items=[DatasetItem(**item) for item in data.get("items", [])],
        )
        logger.info(f"Loaded dataset: {name} ({len(dataset)} items)")
        return dataset

    async def delete(self, name: str) -> None:
        await self.sink.delete_dataset(name)
        logger.info(f"Deleted dataset: {name}")

    async def publish_version(self, dataset: Dataset, items: List[DatasetItem]) -> Dataset:
        """Publish ``dataset`` plus ``items`` as the next version. Returns the new dataset."""
        versioned = Dataset(
            name=next_version_name(dataset.name),
            description=dataset.description,
            items=list(dataset.items) + list(items),
        )
        versioned.id = await DatasetLoader.push(self, versioned)
        return versioned


class DatasetLoader:
    """Utility class for loading and saving datasets as JSON files."""

    @staticmethod
    def load_from_file(file_path: str) -> Dataset:
        """Load dataset from JSON file."""
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = json.load(f)

            dataset = Dataset(**data)
            logger.info(f"Loaded dataset '{dataset.name}' with {len(dataset)} items")
            return dataset

        except FileNotFoundError:
            logger.error(f"Dataset file not found: {file_path}")
            raise
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in dataset file: {e}")
            raise

    @staticmethod
    def save_to_file(dataset: Dataset, file_path: str) -> None:
        """Save dataset to JSON file."""
        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(
                dataset.model_dump(exclude={"id"}),
                f,
                indent=2,
                default=str,
                ensure_ascii=False,
            )
        logger.info(f"Saved dataset '{dataset.name}' to {file_path}")

    @staticmethod
    async def push(store: DatasetStore, dataset: Dataset) -> str:
        """Create ``dataset`` on the store's sink and append all of its items."""
        dataset_id = await store.create(dataset.name, dataset.description)
        if dataset.items:
            await store.add_items(dataset.name, dataset.items)
        return dataset_id


def create_sample_dataset(name: str = "skill-matcher-sample") -> Dataset:
    """Small skill-matcher dataset for demonstration and smoke tests."""
    validated_at = utc_now().isoformat()
    items = [
        DatasetItem(
            input={
                "user_id": "sample-001",
                "skills": ["JavaScript", "React", "TypeScript"],
                "interests": ["education", "youth mentoring"],
                "location": "San Francisco",
                "availability": ["weekends"],
            },
            expected_output={"confidence": 0.85, "match_count": 3},
            metadata={
                "difficulty": "medium",
                "category": "exact_skill_match",
                "source": "manual",
                "validated_by": "expert@impact-circle.org",
                "validated_at": validated_at,
                "tags": ["skills", "location", "interests"],
            },
        ),
        DatasetItem(
            input={
                "user_id": "sample-002",
                "skills": ["Python", "Data Analysis"],
                "interests": ["environmental", "sustainability"],
                "location": "Remote",
                "availability": ["evenings", "weekends"],
            },
            expected_output={"confidence": 0.75, "match_count": 2},
            metadata={
                "difficulty": "easy",
                "category": "partial_skill_match",
                "source": "manual",
                "validated_at": validated_at,
                "tags": ["remote", "environmental"],
            },
        ),
        DatasetItem(
            input={
                "user_id": "sample-003",
                "skills": ["Marketing", "Social Media", "Content Writing"],
                "interests": ["arts", "culture", "community building"],
                "location": "New York",
                "availability": ["flexible"],
            },
            expected_output={"confidence": 0.90, "match_count": 4},
            metadata={
                "difficulty": "easy",
                "category": "high_confidence_match",
                "source": "manual",
                "validated_at": validated_at,
                "tags": ["marketing", "arts", "flexible"],
            },
        ),
    ]
    return Dataset(
        name=name,
        description="Sample test cases for skill matching agent",
        items=items,
    )
