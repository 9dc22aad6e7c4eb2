"""
Typed configuration payloads per node kind.

Editor data uses camelCase keys. Each model reads only the keys it knows,
fills documented defaults for missing ones, and dumps back to camelCase for
the execution service.
"""

from typing import Any, Dict, List, Optional
import json

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class NodeConfig(BaseModel):
    """Base for node configs. Unknown keys are dropped, None means unset."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "ignore"

    @model_validator(mode="before")
    @classmethod
    def _drop_unset(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class AIDialogConfig(NodeConfig):
    model: str = ""
    system_prompt: Optional[str] = None
    user_message: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 1000
    stream: bool = False

    @model_validator(mode="before")
    @classmethod
    def _selected_model(cls, data: Any) -> Any:
        # Older editor versions store the model as selectedModel
        if isinstance(data, dict) and not data.get("model") and data.get("selectedModel"):
            return {**data, "model": data["selectedModel"]}
        return data


class AISummaryConfig(AIDialogConfig):
    summary_style: str = "paragraph"
    summary_length: str = "medium"
    max_summary_length: int = 300
    language: str = "zh-CN"
    include_key_points: bool = False
    extract_keywords: bool = False


class DatabaseConfig(NodeConfig):
    db_type: str = ""
    connection_string: str = ""
    query: str = ""
    parameters: Any = None
    operation: Optional[str] = None


class KnowledgeBaseConfig(NodeConfig):
    knowledge_base_id: str = ""
    search_query: Optional[str] = None
    top_k: int = 5
    similarity_threshold: float = 0.7
    search_type: str = "semantic"


class HttpConfig(NodeConfig):
    url: str = ""
    method: str = "GET"
    headers: Optional[Dict[str, Any]] = None
    body: Any = None


class ConditionConfig(NodeConfig):
    condition: str = ""
    condition_type: str = "expression"
    true_branch: Optional[str] = None
    false_branch: Optional[str] = None


class DataProcessConfig(NodeConfig):
    process_type: str = "transform"
    transform_script: Optional[str] = None
    filter_condition: Optional[str] = None
    aggregate_fields: Any = None
    sort_by: Any = None
    sort_order: str = "asc"
    group_by: Any = None
    json_path: Optional[str] = None
    extract_mode: Optional[str] = None


class StartConfig(NodeConfig):
    trigger_type: str = "manual"
    initial_data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("initial_data", mode="before")
    @classmethod
    def _parse_initial_data(cls, value: Any) -> Any:
        # The property panel may store initial data as a JSON string
        if isinstance(value, str):
            return json.loads(value) if value.strip() else {}
        return value


class EndConfig(NodeConfig):
    output_format: str = "json"
    return_code: int = 0
    final_message: Optional[str] = None


class UserInputNodeConfig(NodeConfig):
    user_input_type: str = "text"
    placeholder: Optional[str] = None
    default_value: Any = None
    validation: Optional[Dict[str, Any]] = None
    options: Optional[List[Any]] = None


class ResponseConfig(NodeConfig):
    response_template: str = ""
    response_format: str = "text"
    status_code: int = 200

