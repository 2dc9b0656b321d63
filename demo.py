"""
Interactive CLI Demo
=====================
Shop with the agent in your terminal.

Usage:
    python demo.py            # local checkout tools (AGENT_FLOW=acp)
    AGENT_FLOW=mcp python demo.py

Suggested conversation:

    "What running shoes do you have?"
    "I'll take two pairs of the trail runners"
    "Ship to 1 Main St, Springfield, IL 62701, US, standard shipping"
    → the agent shows the total; pay it with Stripe test mode and paste the
      PaymentIntent id ("pi_...") back into the chat to complete the order

Commands:
    new    start a fresh conversation
    state  show the checkout awaiting payment, if any
    quit   exit
"""
import asyncio
import logging

from commerce import CheckoutService, StripePaymentProvider, default_catalog, memory_stores
from commerce.errors import CheckoutError
from shopping_agent import AgentSession, build_dispatcher, get_system_prompt
from shopping_agent.config import get_agent_flow
from shopping_agent.session import new_conversation_id


def format_amount(amount: int, currency: str) -> str:
    return f"{amount / 100:.2f} {currency.upper()}"


async def main():
    logging.basicConfig(level=logging.WARNING)

    flow = get_agent_flow()
    print("\n" + "=" * 60)
    print("  ACP Shopping Agent")
    print(f"  Tool flow: {flow}")
    print("=" * 60)

    catalog = default_catalog()
    if flow == "acp":
        print("\nCatalog:")
        for product in catalog.search():
            print(f"  {product.id:<8} {product.name:<28} {format_amount(product.price, product.currency)}")
    print("\nType 'quit' to exit, 'new' to start over, 'state' for the pending checkout.\n")

    # Ephemeral demo: nothing is written to disk.
    sessions, orders = memory_stores()
    service = CheckoutService(catalog, sessions, orders, StripePaymentProvider())
    session = AgentSession(build_dispatcher(flow, service), get_system_prompt(flow), in_memory=True)
    await session.start()
    conversation_id = new_conversation_id()

    try:
        while True:
            try:
                user_input = input("You: ").strip()
            except (EOFError, KeyboardInterrupt):
                print("\n\nGoodbye!")
                break

            if not user_input:
                continue

            command = user_input.lower()
            if command == "quit":
                print("\nGoodbye!")
                break

            if command == "new":
                conversation_id = new_conversation_id()
                print(f"\n[New conversation: {conversation_id[:13]}...]\n")
                continue

            if command == "state":
                pending = await session.pending_checkout(conversation_id)
                if pending:
                    print(
                        f"\n  [Awaiting payment: {pending['checkout_id']} "
                        f"{format_amount(pending['amount'], pending['currency'])}]\n"
                    )
                else:
                    print("\n  [No checkout awaiting payment]\n")
                continue

            print("\nAgent: ", end="", flush=True)
            try:
                response = await session.chat(conversation_id, user_input)
            except CheckoutError as exc:
                print(f"[{exc.code}] {exc.message}\n")
                continue

            for line in response["content"].split("\n"):
                print(line)
            print()

    finally:
        await session.stop()


if __name__ == "__main__":
    asyncio.run(main())
