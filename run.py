import os, uvicorn, dotenv

dotenv.load_dotenv()

if __name__ == "__main__":
    uvicorn.run(
        "meteor.main:app",
        host=os.getenv("FASTAPI_HOST", "127.0.0.1"),
        port=int(os.getenv("FASTAPI_PORT", "4000")),
        timeout_graceful_shutdown=int(os.getenv("SHUTDOWN_TIMEOUT", "10")),
    )
