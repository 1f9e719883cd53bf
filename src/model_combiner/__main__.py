import asyncio

from dotenv import load_dotenv
from loguru import logger

from model_combiner.app_config import load_json_config, parse_app_config, resolve_runtime_env
from model_combiner.bootstrap import bootstrap_runtime
from model_combiner.shell import CombinerShell


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env()
    runtime = await bootstrap_runtime(app, env)

    shell = CombinerShell(runtime.controller)
    shell.print_banner()
    print(f"State: {runtime.state_db_path}")
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
                await shell.handle_line(trimmed)
                print()
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        runtime.kv_store.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
