# file: main.py

import logging
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from daily_checklist.config import LOG_LEVEL, UPLOAD_DIR
from daily_checklist.controllers.auth import router as auth_router
from daily_checklist.controllers.users import router as users_router
from daily_checklist.controllers.children import router as children_router
from daily_checklist.controllers.activities import router as activities_router
from daily_checklist.controllers.plans import router as plans_router, planned_activities_router
from daily_checklist.controllers.checklists import router as checklists_router
from daily_checklist.controllers.notification import router as notification_router
from daily_checklist.controllers.uploads import router as uploads_router
from daily_checklist.database.connection import init_db

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(title="Daily Checklist API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Path(UPLOAD_DIR).mkdir(parents=True, exist_ok=True)

app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR), name="uploads")

app.include_router(auth_router, prefix="/api", tags=["auth"])
app.include_router(users_router, prefix="/api/users", tags=["users"])
app.include_router(children_router, prefix="/api/children", tags=["children"])
app.include_router(activities_router, prefix="/api/activities", tags=["activities"])
app.include_router(plans_router, prefix="/api/plans", tags=["plans"])
app.include_router(planned_activities_router, prefix="/api/planned-activities", tags=["plans"])
app.include_router(checklists_router, prefix="/api/checklists", tags=["checklists"])
app.include_router(notification_router, prefix="/api/notifications", tags=["notifications"])
app.include_router(uploads_router, prefix="/api", tags=["uploads"])


@app.get("/")
async def root():
    return {"message": "Daily Checklist API is running"}


@app.on_event("startup")
async def startup_event():
    await init_db()
