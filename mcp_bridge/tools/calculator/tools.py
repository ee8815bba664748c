"""Calculator provider tools and prompts."""

from mcp_bridge.mcp.models import PromptArgument, PromptMessage, TextContent, ToolCallResult
from mcp_bridge.mcp.registry import ServerRegistry
from mcp_bridge.tools.base import tool
from mcp_bridge.tools.calculator.service import CompoundInterestResult, get_service


@tool(name="calculator-add", description="Add two numbers together")
def add(a: float, b: float) -> float:
    return get_service().add(a, b)


@tool(name="calculator-subtract", description="Subtract the second number from the first")
def subtract(a: float, b: float) -> float:
    return get_service().subtract(a, b)


@tool(name="calculator-multiply", description="Multiply two numbers")
def multiply(a: float, b: float) -> float:
    return get_service().multiply(a, b)


@tool(name="calculator-divide", description="Divide the first number by the second")
def divide(a: float, b: float) -> float:
    return get_service().divide(a, b)


@tool(name="calculator-sqrt", description="Calculate the square root of a number")
def sqrt(number: float) -> float:
    return get_service().sqrt(number)


@tool(name="calculator-power", description="Calculate a number raised to a power")
def power(base: float, exponent: float) -> float:
    return get_service().power(base, exponent)


@tool(
    name="calculator-compound-interest",
    description=(
        "Calculate compound interest given principal, annual rate (as percentage), "
        "years, and compounding frequency per year"
    ),
    parameter_descriptions={
        "principal": "Initial amount, must be positive",
        "annualRate": "Annual interest rate in percent, e.g. 5 for 5%",
        "years": "Number of years",
        "compoundingFrequency": "Compounding periods per year, e.g. 12 for monthly",
    },
    output_schema=CompoundInterestResult.model_json_schema(),
)
def compound_interest(
    principal: float, annualRate: float, years: int, compoundingFrequency: int
) -> ToolCallResult:
    result = get_service().compound_interest(principal, annualRate, years, compoundingFrequency)
    return ToolCallResult(
        content=[TextContent(text=result.summary())],
        structuredContent=result.model_dump(),
    )


@tool(
    name="calculator-percentage",
    description=(
        "Calculate what percentage one number is of another "
        "(e.g., percentage=15, number=100 returns 15)"
    ),
)
def percentage(percentage: float, number: float) -> float:
    return get_service().percentage(percentage, number)


CALCULATOR_TOOLS = [add, subtract, multiply, divide, sqrt, power, compound_interest, percentage]


def word_problem_prompt(arguments: dict[str, str]) -> list[PromptMessage]:
    problem = arguments["problem"]
    return [
        PromptMessage(
            role="user",
            content=TextContent(
                text=(
                    "Solve the following problem step by step. Use the calculator "
                    "tools for every arithmetic operation instead of computing in "
                    f"your head, then state the final answer.\n\nProblem: {problem}"
                )
            ),
        )
    ]


def register(registry: ServerRegistry) -> None:
    """Register all calculator tools and prompts."""
    for func in CALCULATOR_TOOLS:
        registry.tools.register_function(func)

    registry.prompts.register(
        name="calculator-word-problem",
        renderer=word_problem_prompt,
        description="Work through a word problem using the calculator tools",
        arguments=[
            PromptArgument(name="problem", description="The problem statement", required=True),
        ],
    )
