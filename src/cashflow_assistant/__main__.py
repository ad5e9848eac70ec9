import asyncio
import json
import sys
import uuid

from dotenv import load_dotenv
from loguru import logger

from cashflow_assistant.app_config import load_json_config, parse_app_config, resolve_runtime_env
from cashflow_assistant.assistant import ChatRequest
from cashflow_assistant.bootstrap import AppRuntime, bootstrap_runtime
from cashflow_assistant.errors import UpstreamAuthError

_HELP = """\
Commands:
  /help                   show this list
  /history                show the stored conversation
  /clear                   clear the stored conversation
  /analyze <json list>     summarize a list of transactions
  /cache stats|health|invalidate
  exit                     quit"""


async def _handle_command(runtime: AppRuntime, command: str, session_key: str, user_id: str, account_id: str | None) -> None:
    assistant = runtime.assistant
    name, _, rest = command.partition(" ")

    if name == "/help":
        print(_HELP)
    elif name == "/history":
        for msg in await assistant.history(session_key):
            print(f"  {msg['role']}: {msg.get('content') or ''}")
    elif name == "/clear":
        cleared = await assistant.clear_history(session_key)
        print("History cleared." if cleared else "Nothing to clear.")
    elif name == "/analyze":
        try:
            transactions = json.loads(rest or "[]")
        except json.JSONDecodeError as ex:
            print(f"Invalid JSON: {ex.msg}")
            return
        reply = await assistant.analyze_transactions(session_key, transactions)
        print(f"assistant> {reply.answer}")
    elif name == "/cache":
        cache = assistant.cache
        if cache is None:
            print("Context cache is disabled (CASHFLOW_API_BASE_URL not set).")
            return
        action = rest.strip() or "stats"
        if action == "stats":
            print(json.dumps(await cache.stats(user_id), indent=2))
        elif action == "health":
            print(json.dumps(await cache.health(), indent=2))
        elif action == "invalidate":
            if account_id:
                removed = await cache.invalidate_account(user_id, account_id)
            else:
                removed = await cache.invalidate_user(user_id)
            print(f"Removed {removed} cache entries.")
        else:
            print(f"Unknown cache action: {action}")
    else:
        print(f"Unknown command: {name}. Type /help for commands.")


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env(app.provider_name)

    runtime = await bootstrap_runtime(app, env)

    if not env.provider_api_key:
        logger.error(f"{env.provider_env_var} environment variable is required.")
        await runtime.close()
        sys.exit(1)

    session_key = app.session_key or uuid.uuid4().hex
    user_id = app.user_id or "local"
    account_id = app.account_id

    print("cashflow-assistant (type 'exit' to quit, '/help' for commands)")
    print("Tools:")
    for name in runtime.assistant.registry.names:
        print(f"  - {name}")
    print(f"Session: {session_key} ({runtime.store_description} store)")
    if account_id:
        print(f"Account: {account_id}")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    try:
        while True:
            try:
                user_input = input("you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()

            if trimmed in ("exit", "quit"):
                break

            if not trimmed:
                continue

            try:
                if trimmed.startswith("/"):
                    await _handle_command(runtime, trimmed, session_key, user_id, account_id)
                    continue
                reply = await runtime.assistant.chat(
                    ChatRequest(
                        session_key=session_key,
                        user_id=user_id,
                        message=trimmed,
                        account_id=account_id,
                    )
                )
                print(f"assistant> {reply.answer}")
                if reply.tools_used:
                    print(f"  [tools: {', '.join(reply.tools_used)}]")
                if reply.degraded:
                    print(f"  [degraded: {', '.join(reply.degraded)}]")
                print()
            except UpstreamAuthError as ex:
                logger.error(f"Completion service rejected credentials: {ex}")
                print("assistant> The assistant service rejected our credentials. Check your API key.")
                break
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        await runtime.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
