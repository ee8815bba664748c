"""Tests for calculator provider tools."""

import pytest

from mcp_bridge.mcp.registry import ServerRegistry
from mcp_bridge.tools.calculator.service import CalculatorService, get_service
from mcp_bridge.tools.calculator.tools import CALCULATOR_TOOLS, register


class TestCalculatorService:
    """Tests for the arithmetic service."""

    def test_basic_arithmetic(self):
        service = CalculatorService()
        assert service.add(2, 3) == 5
        assert service.subtract(2, 3) == -1
        assert service.multiply(4, 2.5) == 10
        assert service.divide(9, 3) == 3
        assert service.sqrt(16) == 4
        assert service.power(2, 10) == 1024
        assert service.percentage(15, 200) == 30

    @pytest.mark.parametrize(
        "method,args,message",
        [
            ("divide", (1, 0), "Cannot divide by zero"),
            ("sqrt", (-1,), "Cannot calculate square root of negative number"),
            ("compound_interest", (0, 5, 10, 12), "Principal must be positive"),
            ("compound_interest", (1000, -1, 10, 12), "Annual rate cannot be negative"),
            ("compound_interest", (1000, 5, 0, 12), "Years must be positive"),
            ("compound_interest", (1000, 5, 10, 0), "Compounding frequency must be positive"),
            ("compound_interest", (1e308, 100, 10, 12), "result is too large"),
        ],
    )
    def test_invalid_input_raises(self, method, args, message):
        with pytest.raises(ValueError, match=message):
            getattr(CalculatorService(), method)(*args)

    def test_power_overflow_raises_value_error(self):
        with pytest.raises(ValueError, match="too large"):
            CalculatorService().power(10, 1000)

    def test_compound_interest(self):
        result = CalculatorService().compound_interest(1000, 5, 10, 12)
        assert result.finalAmount == pytest.approx(1647.01, abs=0.01)
        assert result.totalInterest == pytest.approx(647.01, abs=0.01)
        assert "Final Amount: $1647.01" in result.summary()

    def test_get_service_returns_singleton(self):
        assert get_service() is get_service()


class TestCalculatorTools:
    """Tests for the calculator tools as served through a registry."""

    @pytest.fixture
    def calculator(self):
        registry = ServerRegistry()
        register(registry)
        return registry

    def test_register_adds_all_tools_and_prompt(self, calculator):
        assert calculator.tool_count == len(CALCULATOR_TOOLS) == 8
        for name in ("add", "subtract", "multiply", "divide", "sqrt", "power", "compound-interest", "percentage"):
            assert calculator.tools.get(f"calculator-{name}") is not None
        assert calculator.prompts.prompt_count == 1

    def test_schemas_require_their_parameters(self, calculator):
        schema = calculator.tools.get("calculator-compound-interest").input_schema
        assert schema["required"] == ["principal", "annualRate", "years", "compoundingFrequency"]
        assert schema["properties"]["years"]["type"] == "integer"
        assert "percent" in schema["properties"]["annualRate"]["description"]

    async def test_divide(self, calculator):
        result = await calculator.tools.call_tool("calculator-divide", {"a": 7, "b": 2})
        assert result.text() == "3.5"

    async def test_divide_by_zero_is_tool_error(self, calculator):
        result = await calculator.tools.call_tool("calculator-divide", {"a": 1, "b": 0})
        assert result.isError
        assert "Cannot divide by zero" in result.text()

    async def test_compound_interest_returns_structured_output(self, calculator):
        result = await calculator.tools.call_tool(
            "calculator-compound-interest",
            {"principal": 1000, "annualRate": 5, "years": 10, "compoundingFrequency": 12},
        )
        assert not result.isError
        assert result.structuredContent["finalAmount"] == pytest.approx(1647.01, abs=0.01)
        assert result.structuredContent["years"] == 10
        assert result.text().startswith("Compound Interest Calculation:")

    async def test_compound_interest_rejects_fractional_years(self, calculator):
        result = await calculator.tools.call_tool(
            "calculator-compound-interest",
            {"principal": 1000, "annualRate": 5, "years": 2.5, "compoundingFrequency": 12},
        )
        assert result.isError
        assert "years" in result.text()

    async def test_missing_argument_is_tool_error(self, calculator):
        result = await calculator.tools.call_tool("calculator-sqrt", {})
        assert result.isError
        assert "'number' is a required property" in result.text()
