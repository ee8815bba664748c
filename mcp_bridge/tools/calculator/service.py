"""Calculator provider service - arithmetic and finance helpers, no external calls."""

import math

from pydantic import BaseModel, Field


class CompoundInterestResult(BaseModel):
    """Result of a compound interest calculation."""

    principal: float = Field(..., description="Initial amount")
    finalAmount: float = Field(..., description="Amount after compounding")
    totalInterest: float = Field(..., description="finalAmount - principal")
    years: int = Field(..., description="Investment period in years")
    annualRate: float = Field(..., description="Annual rate in percent")

    def summary(self) -> str:
        return (
            "Compound Interest Calculation:\n"
            f"Principal: ${self.principal:.2f}\n"
            f"Annual Rate: {self.annualRate:.2f}%\n"
            f"Years: {self.years}\n"
            f"Final Amount: ${self.finalAmount:.2f}\n"
            f"Total Interest: ${self.totalInterest:.2f}"
        )


class CalculatorService:
    """Plain arithmetic. Invalid input raises ValueError."""

    def add(self, a: float, b: float) -> float:
        return a + b

    def subtract(self, a: float, b: float) -> float:
        return a - b

    def multiply(self, a: float, b: float) -> float:
        return a * b

    def divide(self, a: float, b: float) -> float:
        if b == 0:
            raise ValueError("Cannot divide by zero")
        return a / b

    def sqrt(self, number: float) -> float:
        if number < 0:
            raise ValueError("Cannot calculate square root of negative number")
        return math.sqrt(number)

    def power(self, base: float, exponent: float) -> float:
        try:
            return math.pow(base, exponent)
        except OverflowError:
            raise ValueError(f"Result of {base} ** {exponent} is too large") from None

    def compound_interest(
        self,
        principal: float,
        annual_rate: float,
        years: int,
        compounding_frequency: int,
    ) -> CompoundInterestResult:
        """A = P(1 + r/n)^(n*t), with the rate given in percent."""
        if principal <= 0:
            raise ValueError("Principal must be positive")
        if annual_rate < 0:
            raise ValueError("Annual rate cannot be negative")
        if years <= 0:
            raise ValueError("Years must be positive")
        if compounding_frequency <= 0:
            raise ValueError("Compounding frequency must be positive")

        rate = annual_rate / 100
        try:
            amount = principal * (1 + rate / compounding_frequency) ** (compounding_frequency * years)
        except OverflowError:
            amount = math.inf
        if not math.isfinite(amount):
            raise ValueError("Compound interest result is too large")
        return CompoundInterestResult(
            principal=principal,
            finalAmount=amount,
            totalInterest=amount - principal,
            years=years,
            annualRate=annual_rate,
        )

    def percentage(self, percentage: float, number: float) -> float:
        return (percentage / 100) * number


# Singleton service instance
_service: CalculatorService | None = None


def get_service() -> CalculatorService:
    """Get the calculator service instance."""
    global _service
    if _service is None:
        _service = CalculatorService()
    return _service
