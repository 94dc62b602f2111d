"""
Hello Service
=============
The one-route service the pipeline packages: GET / answers a fixed text
body on PORT (default 8080). Started directly by the production image
(``python app.py``).
"""
import os

import uvicorn
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

GREETING = "Hello from CI/CD pipeline!"

app = FastAPI(title="Hello Service")


@app.get("/", response_class=PlainTextResponse)
async def root():
    return GREETING


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8080)))
