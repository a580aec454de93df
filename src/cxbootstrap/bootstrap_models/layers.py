"""
Data models for configuration layers.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

DEVELOPER_LAYER_COMMENT = "my.properties - add your own local development configuration parameters here"


class ConfigLayer(BaseModel):
    """
    A named, priority-ordered source of configuration values.

    Lower priorities are read first; the last layer read wins.
    """

    name: str = Field(..., description="Layer name, e.g. common or dev-persona")
    priority: int = Field(..., ge=0, description="Precedence, lower = lower precedence")
    source: Path = Field(..., description="Path of the source configuration file")
    alias: str = Field("local.properties", description="Base name of the alias created in the layer root")

    class Config:
        frozen = True

    def alias_name(self, width: int) -> str:
        return f"{self.priority:0{width}d}-{self.alias}"


class DeveloperLayer(BaseModel):
    """
    The locally-owned, highest-priority layer. Written once, never regenerated.
    """

    priority: int = Field(99, ge=0)
    alias: str = Field("local.properties")
    comment: Optional[str] = Field(DEVELOPER_LAYER_COMMENT, description="Comment written into the new file")

    class Config:
        frozen = True

    def alias_name(self, width: int) -> str:
        return f"{self.priority:0{width}d}-{self.alias}"
