"""Named flow definitions.

The built-in flows are the language-learning pipelines: dialog simulation,
vocabulary extension and a plain chat.
"""

from __future__ import annotations

from typing import Any

from lm_flow.flow.errors import FlowNotFound
from lm_flow.flow.models import FlowDefinition, NodeDeclaration, RetryRoute

ASSISTANT = "You are a language learning assistant."


class FlowBuilder:
    """Fluent helper for declaring a flow in code."""

    def __init__(self, flow_id: str, name: str) -> None:
        self._flow_id = flow_id
        self._name = name
        self._description: str | None = None
        self._continue_on_failure = False
        self._nodes: list[NodeDeclaration] = []
        self._routes: list[RetryRoute] = []

    def describe(self, description: str) -> FlowBuilder:
        self._description = description
        return self

    def continue_on_failure(self, enabled: bool = True) -> FlowBuilder:
        self._continue_on_failure = enabled
        return self

    def add_node(self, node: NodeDeclaration) -> FlowBuilder:
        self._nodes.append(node)
        return self

    def transform(
        self,
        node_id: str,
        name: str,
        operation: str,
        *,
        description: str | None = None,
        requires_confirmation: bool = False,
        **config: Any,
    ) -> FlowBuilder:
        return self.add_node(
            NodeDeclaration(
                node_id=node_id,
                node_type="transform",
                name=name,
                description=description,
                requires_confirmation=requires_confirmation,
                config={"operation": operation, **config},
            )
        )

    def llm(
        self,
        node_id: str,
        name: str,
        *,
        system_prompt: str,
        user_prompt_template: str,
        response_format: str | None = None,
        output_key: str | None = None,
        description: str | None = None,
        requires_confirmation: bool = False,
        show_response: bool = False,
    ) -> FlowBuilder:
        config: dict[str, Any] = {
            "systemPrompt": system_prompt,
            "userPromptTemplate": user_prompt_template,
        }
        if response_format:
            config["responseFormat"] = response_format
        if output_key:
            config["outputKey"] = output_key
        return self.add_node(
            NodeDeclaration(
                node_id=node_id,
                node_type="llm",
                name=name,
                description=description,
                requires_confirmation=requires_confirmation,
                show_response=show_response,
                config=config,
            )
        )

    def retry_on_invalid(
        self, node_id: str, retry_node_id: str, *, max_retries: int = 3
    ) -> FlowBuilder:
        """Re-run from ``retry_node_id`` while check node ``node_id`` reports invalid output."""
        self._routes.append(
            RetryRoute(node_id=node_id, retry_node_id=retry_node_id, max_retries=max_retries)
        )
        return self

    def build(self) -> FlowDefinition:
        return FlowDefinition(
            flow_id=self._flow_id,
            name=self._name,
            description=self._description,
            nodes=tuple(self._nodes),
            continue_on_failure=self._continue_on_failure,
            routes=tuple(self._routes),
        )


def simulate_dialog_flow() -> FlowDefinition:
    return (
        FlowBuilder("simulate-dialog", "Simulate Dialog")
        .describe("Generate and validate dialog scenarios")
        .transform(
            "validate-and-transform-dialog-input",
            "Validate and Transform Dialog Input",
            "validate-and-transform",
            validationRules=[
                {"field": "situation", "required": True, "type": "string"},
                {"field": "characterA", "required": False, "type": "string"},
                {"field": "characterB", "required": False, "type": "string"},
            ],
            targetStructure={
                "situation": "",
                "characterA": "Character A",
                "characterB": "Character B",
                "notes": "",
            },
        )
        .llm(
            "dialog-analysis",
            "Dialog Analysis",
            system_prompt=f"{ASSISTANT} Analyze dialog scenarios and extract key information.",
            user_prompt_template=(
                "Analyze this dialog scenario: {{input}}\n\n"
                "Provide analysis in JSON format with: number_of_characters, "
                "situation_description, and target_language."
            ),
            response_format="json",
            output_key="analysis",
            description="Analyze dialog scenario to understand characters and situation",
        )
        .llm(
            "dialog-generation",
            "Dialog Generation",
            system_prompt=(
                f"{ASSISTANT} Generate natural dialog conversations based on the "
                "scenario and analysis."
            ),
            user_prompt_template=(
                "Based on the analysis: {{input}}\n\n{{dialogFormatInstructions}}\n\n"
                "Generate a natural dialog conversation. The output MUST be in JSON format "
                'with:\n- "characters": ["characterAName", "characterBName"]\n'
                '- "dialog": [{"character": "...", "use_text": "...", "learn_text": "..."}]\n\n'
                "Make the dialog natural, relevant to the situation, and appropriate for "
                "language learning."
            ),
            response_format="json",
            output_key="dialog",
            description="Generate dialog conversation with both user and learning language",
        )
        .llm(
            "dialog-check",
            "Dialog Check",
            system_prompt=(
                f"{ASSISTANT} Validate dialog content for correctness, relevance, and quality."
            ),
            user_prompt_template=(
                "Validate this generated dialog against the original analysis.\n\n"
                "Original Analysis:\n{{analysis}}\n\nGenerated Dialog:\n{{dialog}}\n\n"
                "{{validationInstructions}}\n\n"
                'Return JSON with:\n- "is_valid": true/false\n'
                '- "reasons": ["reason1", ...] if not valid'
            ),
            response_format="json",
            output_key="dialogCheck",
            description="Validate generated dialog correctness and relevance",
        )
        .llm(
            "dialog-audio",
            "Dialog Audio",
            system_prompt=f"{ASSISTANT} Prepare dialog content for audio generation.",
            user_prompt_template="Prepare this dialog for audio generation: {{dialog}}",
            response_format="json",
            description="Prepare dialog for audio generation",
            requires_confirmation=True,
            show_response=True,
        )
        .retry_on_invalid("dialog-check", "dialog-generation")
        .build()
    )


def extend_vocabulary_flow() -> FlowDefinition:
    return (
        FlowBuilder("extend-vocabulary", "Extend Vocabulary")
        .describe("Analyze and extend vocabulary with relationships")
        .transform("format-vocab-input", "Format Vocabulary Input", "format", format="structured")
        .llm(
            "extension-analysis",
            "Extension Analysis",
            system_prompt=f"{ASSISTANT} Analyze vocabulary extension requests.",
            user_prompt_template=(
                "Analyze this vocabulary extension request: {{input}}\n\n"
                "Determine: vocabulary category (family, work, shopping, daily, etc.), "
                "number of words needed, and target language. {{phoneticFormat}}"
            ),
            response_format="json",
            output_key="vocabulary",
            description="Analyze vocabulary extension requirements",
        )
        .llm(
            "extension-check",
            "Extension Check",
            system_prompt=f"{ASSISTANT} Validate vocabulary lists for correctness.",
            user_prompt_template=(
                "Check if these vocabularies are correct and related to the analysis: {{input}}\n\n"
                'Return JSON with:\n- "is_valid": true/false\n'
                '- "reasons": ["reason1", ...] if not valid'
            ),
            response_format="json",
            description="Validate vocabulary correctness",
        )
        .llm(
            "extension-relationship-analysis",
            "Extension Relationship Analysis",
            system_prompt=f"{ASSISTANT} Analyze relationships between vocabulary words.",
            user_prompt_template=(
                "Define relationships for these words (collocations, synonyms, "
                "same-category words, antonyms, etc.): {{vocabulary}}"
            ),
            response_format="json",
            description="Analyze vocabulary relationships",
            requires_confirmation=True,
        )
        .llm(
            "extension-relationship-check",
            "Extension Relationship Check",
            system_prompt=f"{ASSISTANT} Validate vocabulary relationships.",
            user_prompt_template="Check if these relationships are correct: {{input}}",
            response_format="json",
            description="Validate vocabulary relationships",
            show_response=True,
        )
        .retry_on_invalid("extension-check", "extension-analysis")
        .build()
    )


def chat_flow() -> FlowDefinition:
    return (
        FlowBuilder("chat", "Chat")
        .describe("Single-turn chat with the assistant")
        .transform("format-chat-input", "Format Chat Input", "format", format="text")
        .llm(
            "chat-response",
            "Chat Response",
            system_prompt=f"{ASSISTANT} Answer questions about the learning language.",
            user_prompt_template="{{input}}",
            show_response=True,
        )
        .build()
    )


class FlowCatalog:
    """Lookup of flow definitions by id."""

    def __init__(self, definitions: list[FlowDefinition] | None = None) -> None:
        self._flows: dict[str, FlowDefinition] = {}
        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: FlowDefinition) -> None:
        self._flows[definition.flow_id] = definition

    def get(self, flow_id: str) -> FlowDefinition:
        try:
            return self._flows[flow_id]
        except KeyError:
            raise FlowNotFound(flow_id) from None

    def ids(self) -> list[str]:
        return sorted(self._flows)

    def list(self) -> list[FlowDefinition]:
        return [self._flows[flow_id] for flow_id in self.ids()]


def default_catalog() -> FlowCatalog:
    return FlowCatalog([simulate_dialog_flow(), extend_vocabulary_flow(), chat_flow()])
