import asyncio
import logging
import sys

from multi_llm_mcp import ChatMessage, MCPOrchestrator, ToolServerConfig
from multi_llm_mcp.config import chat_provider_configs_from_env


async def main() -> None:
    logging.basicConfig(level=logging.INFO)
    configs = chat_provider_configs_from_env()
    if not configs:
        print("Set OPENAI_API_KEY, ANTHROPIC_API_KEY or GOOGLE_API_KEY (or use a .env file).")
        return

    async with MCPOrchestrator() as orchestrator:
        for name, config in configs.items():
            orchestrator.add_chat_provider(name, config)

        # e.g. python examples/smoke.py npx -y @modelcontextprotocol/server-filesystem .
        if len(sys.argv) > 1:
            await orchestrator.add_tool_server(
                ToolServerConfig(name="tools", command=sys.argv[1], args=sys.argv[2:])
            )
            tools = await orchestrator.get_all_tools()
            print("Tools:", ", ".join(t.name for t in tools) or "(none)")

        provider_name = next(iter(configs))
        messages = [ChatMessage(role="user", content="List the files in the current directory.")]
        response = await orchestrator.chat(provider_name, messages)
        print(f"[{provider_name}] {response.finish_reason}: {response.content}")

        for call in response.tool_calls or []:
            try:
                result = await orchestrator.execute_tool_call(call)
            except Exception as e:
                print("Tool call failed:", type(e).__name__, e)
                continue
            print(f"{call.name} ->", result)


if __name__ == "__main__":
    asyncio.run(main())
