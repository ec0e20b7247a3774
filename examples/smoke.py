import asyncio

from llm_gateway.config import GatewaySettings, build_registry
from llm_gateway.events import decode_stream
from llm_gateway.service import GatewayService
from llm_gateway.tools import InMemoryToolRegistry


async def main() -> None:
    settings = GatewaySettings.from_env()
    tools = InMemoryToolRegistry({"echo": lambda params: params})
    registry = build_registry(settings, tools)
    await registry.initialize()
    service = GatewayService(registry, settings=settings)

    try:
        response = await service.chat_completion(
            {"message": "Say hello in five words.", "model": "lmstudio/qwen2.5-7b-instruct"}
        )
        if response.stream is None:
            print("Request failed:", response.status, response.json_body)
            return

        body = b""
        async for frame in response.stream:
            body += frame
        for event in decode_stream(body.decode()):
            print(event.model_dump(by_alias=True))
    finally:
        await registry.aclose()


if __name__ == "__main__":
    asyncio.run(main())
