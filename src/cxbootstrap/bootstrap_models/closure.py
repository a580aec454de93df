"""
Data model for a resolved dependency closure.
"""

from typing import FrozenSet, List

from pydantic import BaseModel, Field


class DependencyClosure(BaseModel):
    """
    The transitive set of modules required by a project.

    Invariant: the closure is a fixed point, no member's dependency is missing.
    """

    modules: FrozenSet[str] = Field(default_factory=frozenset)
    requested: FrozenSet[str] = Field(default_factory=frozenset)
    always_included: FrozenSet[str] = Field(default_factory=frozenset)

    class Config:
        frozen = True

    def __contains__(self, module_id: object) -> bool:
        return module_id in self.modules

    def __len__(self) -> int:
        return len(self.modules)

    def sorted(self) -> List[str]:
        return sorted(self.modules)
