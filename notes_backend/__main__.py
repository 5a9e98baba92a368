"""Run the notes API server."""
import os

from dotenv import load_dotenv


def main():
    import uvicorn

    load_dotenv()
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 3001))
    print(f"Server running on http://{host}:{port}")
    uvicorn.run("notes_backend.api.main:app", host=host, port=port)


if __name__ == "__main__":
    main()
