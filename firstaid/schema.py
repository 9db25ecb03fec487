from __future__ import annotations

from typing import List, Literal, NamedTuple, Optional

from pydantic import BaseModel, Field, model_validator


EmergencyCategory = Literal[
    "critical",
    "wounds",
    "burns",
    "bones",
    "breathing",
    "head",
    "medical",
    "environmental",
]
CATEGORY_ORDER: tuple[str, ...] = (
    "critical",
    "wounds",
    "burns",
    "bones",
    "breathing",
    "head",
    "medical",
    "environmental",
)
AffordanceKind = Literal["countdown", "countdown_on_request", "timestamp"]


class InstructionKey(NamedTuple):
    """Completion key: the step number and the instruction's index in it."""

    step: int
    index: int


class Instruction(BaseModel):
    text: str
    emergency_call: bool = False
    link: Optional[str] = None
    heading: bool = False

    model_config = {"extra": "forbid", "frozen": True}

    @model_validator(mode="before")
    @classmethod
    def coerce_plain_text(cls, data):
        if isinstance(data, str):
            return {"text": data}
        return data


class TriggerAffordance(BaseModel):
    instruction: Optional[int] = None
    kind: AffordanceKind
    duration_seconds: Optional[int] = Field(default=None, gt=0)
    label: str = "Timer: "

    model_config = {"extra": "forbid", "frozen": True}

    @model_validator(mode="after")
    def check_kind(self) -> "TriggerAffordance":
        if self.kind == "timestamp":
            if self.instruction is None:
                raise ValueError("timestamp affordance needs a trigger instruction")
        elif self.duration_seconds is None:
            raise ValueError(f"{self.kind} affordance needs duration_seconds")
        if self.kind == "countdown" and self.instruction is None:
            raise ValueError("countdown affordance needs a trigger instruction")
        return self

    @property
    def is_timer(self) -> bool:
        return self.kind != "timestamp"


class Step(BaseModel):
    number: int = Field(ge=1)
    title: str
    icon: str
    instructions: List[Instruction]
    warning_note: Optional[str] = None
    image: Optional[str] = None
    trigger: Optional[TriggerAffordance] = None
    warning_call: bool = False
    warning_link: Optional[str] = None
    metronome: bool = False

    model_config = {"extra": "forbid", "frozen": True}

    @model_validator(mode="after")
    def validate_trigger_index(self) -> "Step":
        if not self.instructions:
            raise ValueError(f"step {self.number} has no instructions")
        if self.trigger and self.trigger.instruction is not None:
            if not 0 <= self.trigger.instruction < len(self.instructions):
                raise ValueError(f"step {self.number}: trigger index {self.trigger.instruction} out of range")
        return self

    def keys(self) -> List[InstructionKey]:
        return [InstructionKey(self.number, i) for i in range(len(self.instructions))]

    def is_trigger(self, key: InstructionKey) -> bool:
        return (
            self.trigger is not None
            and key.step == self.number
            and self.trigger.instruction == key.index
        )


class SymptomList(BaseModel):
    title: str = "Signs and Symptoms"
    items: List[str]
    warning_note: Optional[str] = None

    model_config = {"extra": "forbid", "frozen": True}


class Topic(BaseModel):
    id: str
    category: EmergencyCategory
    title: str
    subtitle: str
    icon: str
    color: str
    steps: List[Step]
    symptoms: Optional[SymptomList] = None
    keywords: List[str] = Field(default_factory=list)

    model_config = {"extra": "forbid", "frozen": True}

    @model_validator(mode="after")
    def validate_step_order(self) -> "Topic":
        numbers = [s.number for s in self.steps]
        if not numbers:
            raise ValueError(f"topic {self.id} has no steps")
        if any(b <= a for a, b in zip(numbers, numbers[1:])):
            raise ValueError(f"topic {self.id}: step numbers must be unique and increasing")
        return self

    def step(self, number: int) -> Step:
        for s in self.steps:
            if s.number == number:
                return s
        raise KeyError(f"topic {self.id} has no step {number}")

    def instruction(self, key: InstructionKey) -> Instruction:
        step = self.step(key.step)
        if not 0 <= key.index < len(step.instructions):
            raise KeyError(f"step {key.step} of {self.id} has no instruction {key.index}")
        return step.instructions[key.index]

    def instruction_keys(self) -> List[InstructionKey]:
        return [k for s in self.steps for k in s.keys()]

    def linked_topics(self) -> List[str]:
        out: List[str] = []
        for s in self.steps:
            if s.warning_link:
                out.append(s.warning_link)
            out.extend(i.link for i in s.instructions if i.link)
        return out


class CrossListing(BaseModel):
    """A topic owned by another category that is also listed under this one."""

    topic_id: str
    keywords: List[str] = Field(default_factory=list)

    model_config = {"extra": "forbid", "frozen": True}


class Category(BaseModel):
    id: EmergencyCategory
    title: str
    subtitle: str
    icon: str
    color: str
    topics: List[Topic]
    cross_listed: List[CrossListing] = Field(default_factory=list)

    model_config = {"extra": "forbid", "frozen": True}

    @model_validator(mode="after")
    def validate_topic_category(self) -> "Category":
        for t in self.topics:
            if t.category != self.id:
                raise ValueError(f"topic {t.id} is filed under {self.id} but declares {t.category}")
        return self


class SearchResult(BaseModel):
    category: EmergencyCategory
    title: str
    subtitle: str
    icon: str
    color: str
    is_subtopic: bool
    topic_id: Optional[str] = None

    model_config = {"extra": "forbid", "frozen": True}
