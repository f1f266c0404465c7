"""
Example: Routing a request through a triage agent.

A triage agent hands billing questions to a billing agent, which looks up an
invoice with a tool and answers. The provider is scripted so the example
runs offline; swap in a real Provider to talk to a model.
"""

import asyncio

from conductor import Agent, Runner, RunConfig, RunHooks, ScriptedProvider, function_tool
from conductor.config import setup_logging
from conductor.guardrails import PIIGuardrail
from conductor.observability import MetricsHooks
from conductor.providers import text_response, tool_call_response


INVOICES = {"INV-1001": {"amount": 129.0, "status": "paid"}}


@function_tool
def get_invoice(invoice_id: str) -> dict:
    """Fetch an invoice.

    Args:
        invoice_id: Invoice identifier such as INV-1001.
    """
    return INVOICES.get(invoice_id, {"error": "not found"})


class PrintHooks(RunHooks):
    """Print handoffs and tool calls as they happen."""

    async def on_handoff(self, event):
        print(f"-> handoff {event.from_agent.name} to {event.to_agent.name}")

    async def on_tool_end(self, event):
        print(f"-> {event.tool_name} returned {event.result}")


async def main():
    setup_logging()

    billing = Agent(
        name="Billing",
        instructions="Answer billing questions. Use get_invoice for invoice lookups.",
        handoff_description="Handles invoices and payments.",
        tools=[get_invoice],
    )
    triage = Agent(
        name="Triage",
        instructions="Route the user to the right specialist.",
        handoffs=[billing],
    )

    provider = ScriptedProvider([
        tool_call_response(("transfer_to_billing", {})),
        tool_call_response(("get_invoice", {"invoice_id": "INV-1001"})),
        text_response("Invoice INV-1001 for $129.00 is paid."),
    ])

    metrics = MetricsHooks()
    runner = Runner(provider, hooks=[PrintHooks(), metrics])
    config = RunConfig(max_turns=5, input_guardrails=[PIIGuardrail()])

    result = await runner.run("Was invoice INV-1001 paid?", triage, config)

    print(f"\n{result.last_agent.name}: {result.final_output}")
    print(f"Turns: {result.turns}")
    print(f"Metrics: {metrics.get_summary()}")


if __name__ == "__main__":
    asyncio.run(main())
