"""
Tests unitarios para los agentes y el orquestador del studio.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import openai
import pytest

from app.services.prodigi.errors import ProdigiNotFoundError
from app.services.studio.agents import (
    AGENTS,
    HISTORY_WINDOW,
    MAX_TOOL_STEPS,
    AgentResponse,
    StudioContext,
    build_config_context,
    get_agent,
)
from app.services.studio.orchestrator import (
    DEFAULT_FALLBACK_MESSAGE,
    FALLBACK_CONFIDENCE,
    FALLBACK_MESSAGES,
    StudioOrchestrator,
    create_fallback_response,
    select_agents,
)
from app.services.studio.tools import LOOKUP_SKU, execute_tool
from app.utils.error_handler import LLMAPIException


def make_completion(content):
    completion = MagicMock()
    completion.choices = [MagicMock()]
    completion.choices[0].message.content = content
    completion.choices[0].message.tool_calls = None
    return completion


def make_tool_call_completion(call_id, name, arguments):
    call = MagicMock()
    call.id = call_id
    call.function.name = name
    call.function.arguments = json.dumps(arguments)
    completion = make_completion(None)
    completion.choices[0].message.tool_calls = [call]
    return completion


def make_openai_client(*contents, side_effect=None):
    client = MagicMock()
    if side_effect is not None:
        client.chat.completions.create = AsyncMock(side_effect=side_effect)
    else:
        client.chat.completions.create = AsyncMock(side_effect=[make_completion(c) for c in contents])
    return client


class TestSelectAgents:
    def test_no_keywords_uses_frame_advisor(self):
        """Debe usar frame-advisor cuando ninguna palabra clave coincide."""
        assert select_agents("hello there") == ["frame-advisor"]

    def test_single_agent_is_paired_with_frame_advisor(self):
        """Debe acompañar con frame-advisor a un único agente distinto."""
        assert select_agents("How much for this?") == ["pricing-advisor", "frame-advisor"]

    def test_multiple_agents_in_fixed_order(self):
        """Debe devolver los agentes en orden fijo cuando coinciden varios."""
        selected = select_agents("Which SKU should I use and what is the price?")
        assert selected == ["prodigi-config", "frame-advisor", "pricing-advisor"]

    def test_two_non_default_agents_are_not_padded(self):
        """No debe agregar frame-advisor si ya hay dos agentes."""
        assert select_agents("generate an image within budget") == ["image-generation", "pricing-advisor"]

    def test_empty_message(self):
        """Debe tolerar mensajes vacíos."""
        assert select_agents("") == ["frame-advisor"]


class TestBuildConfigContext:
    def test_lists_present_fields(self):
        """Debe listar solo los campos presentes, omitiendo mount y glaze 'none'."""
        text = build_config_context(
            {"productType": "framed-print", "size": "16x20", "frameColor": "black", "mount": "none", "glaze": "acrylic"}
        )
        assert text.splitlines() == [
            "Product Type: framed-print",
            "Size: 16x20",
            "Frame Color: black",
            "Glaze: acrylic",
        ]

    def test_empty_config(self):
        """Debe indicar que no hay configuración."""
        assert build_config_context(None) == "No configuration set"
        assert build_config_context({"mount": "none"}) == "No configuration set"


class TestStudioAgent:
    def test_get_agent_defaults_to_frame_advisor(self):
        """Debe devolver frame-advisor para nombres desconocidos."""
        assert get_agent("unknown") is AGENTS["frame-advisor"]

    def test_messages_include_recent_history_only(self):
        """Debe incluir solo los últimos mensajes de usuario y asistente."""
        history = [{"role": "user", "content": f"m{i}"} for i in range(8)]
        history.append({"role": "system", "content": "ignored"})
        context = StudioContext(frame_config={"size": "8x10"}, conversation_history=history)

        messages = AGENTS["pricing-advisor"].build_messages("price?", context)

        assert messages[0]["role"] == "system"
        assert "Size: 8x10" in messages[0]["content"]
        assert messages[-1] == {"role": "user", "content": "price?"}
        # El mensaje "system" cae dentro de la ventana pero se descarta
        assert len(messages) == 1 + (HISTORY_WINDOW - 1) + 1

    def test_frame_advisor_includes_image_analysis(self):
        """Debe incluir el análisis de imagen en el prompt del frame-advisor."""
        agent = AGENTS["frame-advisor"]
        with_analysis = agent.build_system_prompt(StudioContext(image_analysis={"mood": "calm"}))
        without = agent.build_system_prompt(StudioContext())

        assert '"mood": "calm"' in with_analysis
        assert "No image analysis available" in without
        assert "Image Analysis" not in AGENTS["pricing-advisor"].build_system_prompt(StudioContext())

    @pytest.mark.asyncio
    async def test_run_returns_completion_content(self):
        """Debe devolver el contenido de OpenAI con la confianza del agente."""
        client = make_openai_client("  Use a black frame.  ")

        response = await AGENTS["frame-advisor"].run("which frame?", StudioContext(), client=client)

        assert response.content == "Use a black frame."
        assert response.confidence == 0.85
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["temperature"] == 0.7
        assert "tools" not in kwargs

    @pytest.mark.asyncio
    async def test_run_without_api_key_uses_canned_answer(self, monkeypatch):
        """Debe responder con el mensaje por defecto y confianza 0.7 sin API key."""
        monkeypatch.setattr("app.services.studio.agents.create_openai_client", lambda: None)

        response = await AGENTS["pricing-advisor"].run("price?", StudioContext())

        assert response.confidence == 0.7
        assert response.metadata["fallback"] is True
        assert response.content == AGENTS["pricing-advisor"].api_key_fallback

    @pytest.mark.asyncio
    async def test_run_wraps_openai_errors(self):
        """Debe convertir errores de OpenAI en LLMAPIException."""
        client = make_openai_client(side_effect=openai.OpenAIError("quota exceeded"))

        with pytest.raises(LLMAPIException) as exc_info:
            await AGENTS["prodigi-config"].run("sku?", StudioContext(), client=client)

        assert "quota exceeded" in exc_info.value.message


class TestStudioTools:
    @pytest.mark.asyncio
    async def test_pricing_advisor_quotes_through_tool(self, monkeypatch):
        """Debe cotizar con Prodigi cuando el modelo pide get_price_quote y responder con el resultado."""
        pricing = MagicMock()
        pricing.quote_studio_config = AsyncMock(
            return_value={"pricing": {"total": 64.0, "shipping": 9.0, "currency": "USD", "estimated": False}}
        )
        monkeypatch.setattr("app.services.studio.tools.get_pricing_service", lambda: pricing)
        client = make_openai_client()
        client.chat.completions.create = AsyncMock(
            side_effect=[
                make_tool_call_completion("call_1", "get_price_quote", {"country": "gb"}),
                make_completion("It costs $64 with shipping."),
            ]
        )
        context = StudioContext(frame_config={"sku": "GLOBAL-CFPM-16X20", "frameColor": "black"})

        response = await AGENTS["pricing-advisor"].run("how much?", context, client=client)

        assert response.content == "It costs $64 with shipping."
        assert response.metadata == {"tools": ["get_price_quote"]}
        pricing.quote_studio_config.assert_awaited_once_with({"sku": "GLOBAL-CFPM-16X20", "frameColor": "black"}, "GB")

        first, second = client.chat.completions.create.call_args_list
        assert [tool["function"]["name"] for tool in first.kwargs["tools"]] == ["get_price_quote"]
        messages = second.kwargs["messages"]
        assert messages[-2]["role"] == "assistant"
        assert messages[-2]["tool_calls"][0]["id"] == "call_1"
        assert messages[-1]["role"] == "tool"
        assert messages[-1]["tool_call_id"] == "call_1"
        assert json.loads(messages[-1]["content"])["pricing"]["total"] == 64.0

    @pytest.mark.asyncio
    async def test_prodigi_config_looks_up_sku(self, monkeypatch):
        """Debe consultar el producto de Prodigi con el SKU base en lookup_sku."""
        sdk = MagicMock()
        sdk.products.get = AsyncMock(return_value={"description": "Classic frame", "attributes": {"color": ["black"]}})
        monkeypatch.setattr("app.services.studio.tools.get_prodigi_sdk", lambda: sdk)
        client = make_openai_client()
        client.chat.completions.create = AsyncMock(
            side_effect=[
                make_tool_call_completion("call_9", "lookup_sku", {"sku": "GLOBAL-CFPM-16X20-abcdef12"}),
                make_completion("That SKU exists in black."),
            ]
        )

        response = await AGENTS["prodigi-config"].run("is this sku valid?", StudioContext(), client=client)

        assert response.content == "That SKU exists in black."
        sdk.products.get.assert_awaited_once_with("GLOBAL-CFPM-16X20")
        tool_message = client.chat.completions.create.call_args.kwargs["messages"][-1]
        assert json.loads(tool_message["content"]) == {
            "success": True,
            "sku": "GLOBAL-CFPM-16X20",
            "description": "Classic frame",
            "attributes": {"color": ["black"]},
            "message": "Found SKU: GLOBAL-CFPM-16X20",
        }

    @pytest.mark.asyncio
    async def test_tool_errors_are_returned_to_model(self, monkeypatch):
        """Debe devolver al modelo el error de Prodigi en lugar de propagarlo."""
        sdk = MagicMock()
        sdk.products.get = AsyncMock(side_effect=ProdigiNotFoundError("Product with SKU GLOBAL-NOPE-1"))
        monkeypatch.setattr("app.services.studio.tools.get_prodigi_sdk", lambda: sdk)

        result = await execute_tool([LOOKUP_SKU], "lookup_sku", '{"sku": "GLOBAL-NOPE-1"}', {})

        assert result == {"success": False, "error": "Resource not found: Product with SKU GLOBAL-NOPE-1"}

    @pytest.mark.asyncio
    async def test_unknown_tool_and_bad_arguments(self):
        assert await execute_tool([LOOKUP_SKU], "drop_tables", "{}", {}) == {
            "success": False,
            "error": "Unknown tool: drop_tables",
        }
        assert (await execute_tool([LOOKUP_SKU], "lookup_sku", "{not json", {}))["error"] == "Invalid tool arguments"

    @pytest.mark.asyncio
    async def test_price_quote_requires_sku(self, monkeypatch):
        """No debe cotizar sin SKU en los argumentos ni en la configuración."""
        pricing = MagicMock()
        pricing.quote_studio_config = AsyncMock()
        monkeypatch.setattr("app.services.studio.tools.get_pricing_service", lambda: pricing)

        result = await execute_tool(AGENTS["pricing-advisor"].tools, "get_price_quote", "{}", {"size": "16x20"})

        assert result["success"] is False
        pricing.quote_studio_config.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tool_rounds_are_limited(self, monkeypatch):
        """Debe pedir la respuesta final sin herramientas tras MAX_TOOL_STEPS rondas."""
        sdk = MagicMock()
        sdk.products.get = AsyncMock(return_value={"attributes": {}})
        monkeypatch.setattr("app.services.studio.tools.get_prodigi_sdk", lambda: sdk)
        client = make_openai_client()
        client.chat.completions.create = AsyncMock(
            side_effect=[
                *(
                    make_tool_call_completion(f"call_{i}", "lookup_sku", {"sku": "GLOBAL-CFPM-16X20"})
                    for i in range(MAX_TOOL_STEPS)
                ),
                make_completion("Done."),
            ]
        )

        response = await AGENTS["prodigi-config"].run("sku?", StudioContext(), client=client)

        assert response.content == "Done."
        assert client.chat.completions.create.await_count == MAX_TOOL_STEPS + 1
        assert "tools" not in client.chat.completions.create.call_args.kwargs


class TestStudioOrchestrator:
    def test_fallback_response(self):
        """Debe construir respuestas de respaldo con confianza baja."""
        response = create_fallback_response("pricing-advisor", RuntimeError("boom"))

        assert response.confidence == FALLBACK_CONFIDENCE
        assert response.content == FALLBACK_MESSAGES["pricing-advisor"]
        assert response.metadata == {"error": "boom", "fallback": True}
        assert create_fallback_response("other", RuntimeError()).content == DEFAULT_FALLBACK_MESSAGE

    @pytest.mark.asyncio
    async def test_single_agent_response_is_returned_verbatim(self):
        """Debe devolver tal cual la respuesta cuando hay un solo agente."""
        client = make_openai_client("Go with walnut.")
        orchestrator = StudioOrchestrator(client=client)

        result = await orchestrator.chat("hello", StudioContext())

        assert result["content"] == "Go with walnut."
        assert result["agents"] == ["frame-advisor"]
        assert client.chat.completions.create.await_count == 1

    @pytest.mark.asyncio
    async def test_multiple_agents_are_synthesized(self):
        """Debe sintetizar las respuestas de varios agentes con una llamada extra."""
        client = make_openai_client("It costs $50.", "Black suits it.", "Combined answer")
        orchestrator = StudioOrchestrator(client=client)

        result = await orchestrator.chat("how much is it", StudioContext())

        assert result["agents"] == ["pricing-advisor", "frame-advisor"]
        assert result["content"] == "Combined answer"
        assert client.chat.completions.create.await_count == 3
        synthesis_prompt = client.chat.completions.create.call_args.kwargs["messages"][0]["content"]
        assert "Agent 1 (pricing-advisor)" in synthesis_prompt

    @pytest.mark.asyncio
    async def test_agent_failure_uses_fallback(self):
        """Debe sustituir por respaldo la respuesta de un agente que falla."""
        client = make_openai_client(side_effect=openai.OpenAIError("down"))
        orchestrator = StudioOrchestrator(client=client)

        result = await orchestrator.chat("hi", StudioContext())

        assert result["content"] == FALLBACK_MESSAGES["frame-advisor"]
        assert result["responses"][0]["confidence"] == FALLBACK_CONFIDENCE

    @pytest.mark.asyncio
    async def test_synthesis_failure_picks_highest_confidence(self):
        """Debe elegir la respuesta de mayor confianza si la síntesis falla."""
        client = make_openai_client(side_effect=openai.OpenAIError("down"))
        orchestrator = StudioOrchestrator(client=client)
        responses = [
            AgentResponse(agent="frame-advisor", content="low", confidence=0.3),
            AgentResponse(agent="pricing-advisor", content="high", confidence=0.9),
        ]

        assert await orchestrator.synthesize_responses(responses, "q") == "high"

    @pytest.mark.asyncio
    async def test_synthesis_without_client_picks_highest_confidence(self, monkeypatch):
        """Debe elegir la de mayor confianza cuando no hay cliente OpenAI."""
        monkeypatch.setattr("app.services.studio.orchestrator.create_openai_client", lambda: None)
        orchestrator = StudioOrchestrator()
        responses = [
            AgentResponse(agent="a", content="first", confidence=0.7),
            AgentResponse(agent="b", content="second", confidence=0.8),
        ]

        assert await orchestrator.synthesize_responses(responses, "q") == "second"
        assert await orchestrator.synthesize_responses([], "q") == DEFAULT_FALLBACK_MESSAGE
