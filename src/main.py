from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from src.routers.process_image import router as process_image_router
from src.routers.process_image import validation_error_handler

app = FastAPI(title="Poem Lens API")

app.include_router(process_image_router)
app.add_exception_handler(RequestValidationError, validation_error_handler)


@app.get("/")
def root():
    return {"message": "API is running!"}
