"""
Executors that run entirely in-process: start and end.
"""

from typing import Any, Dict, Optional
from datetime import datetime
import json

from agentflow.engine.node import (
    ExecutionContext,
    NodeExecutor,
    NodeInput,
    NodeOutcome,
    register_executor,
)
from agentflow.nodes.configs import EndConfig, StartConfig


def _as_json(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


@register_executor("startNode", "start-node")
class StartExecutor(NodeExecutor):
    """Seeds the run variables from the node's initial data."""

    async def execute(self, node_input: NodeInput, context: ExecutionContext) -> NodeOutcome:
        config = StartConfig.model_validate(node_input.data)

        # Values the user already supplied win over static defaults
        for key, value in config.initial_data.items():
            context.variables.setdefault(key, value)

        user_input = context.user_input
        markdown = "\n".join([
            "### Workflow started",
            "",
            f"- **Trigger**: {config.trigger_type}",
            f"- **Started at**: {datetime.now():%Y-%m-%d %H:%M:%S}",
            f"- **Initial data**: {_as_json(config.initial_data)}",
            f"- **User input**: {user_input if user_input is not None else 'none'}",
        ])

        return self.normalize_output({
            "message": "Workflow started",
            "triggerType": config.trigger_type,
            "initialData": config.initial_data,
            "userInput": user_input,
            "markdownOutput": markdown,
        })


@register_executor("endNode", "end-node")
class EndExecutor(NodeExecutor):
    """Packages the most recent node result as the run's final artifact."""

    async def execute(self, node_input: NodeInput, context: ExecutionContext) -> NodeOutcome:
        config = EndConfig.model_validate(node_input.data)
        last = next(reversed(list(context.node_results.values())), None)
        final_output = self.final_output(last)

        parts = [
            "### Workflow completed",
            "",
            f"- **Completed at**: {datetime.now():%Y-%m-%d %H:%M:%S}",
            f"- **Return code**: {config.return_code}",
            f"- **Output format**: {config.output_format}",
            "",
            "#### Final result",
            "",
        ]
        if last is None:
            parts.append("No previous node result")
        elif isinstance(last, dict) and last.get("markdownOutput"):
            parts.append(last["markdownOutput"])
        else:
            parts.extend(["```json", _as_json(final_output), "```"])

        if config.final_message:
            parts.extend(["", "#### Message", "", config.final_message])

        return self.normalize_output({
            "message": "Workflow completed",
            "previousResult": last,
            "finalOutput": final_output,
            "outputFormat": config.output_format,
            "returnCode": config.return_code,
            "finalMessage": config.final_message,
            "markdownOutput": "\n".join(parts),
        })

    @staticmethod
    def final_output(last: Optional[Dict[str, Any]]) -> Any:
        if not isinstance(last, dict):
            return last
        for key in ("output", "result"):
            if last.get(key) is not None:
                return last[key]
        return last
