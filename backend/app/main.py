from fastapi import FastAPI, HTTPException, Depends, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from datetime import datetime, timezone
from contextlib import asynccontextmanager
from functools import lru_cache
import hmac
import time
import uuid

import sentry_sdk
from supabase import Client

from . import config
from .logging_config import (
    setup_logging, log_error, log_api_call,
    ValidationError, NotFoundError
)
from .validation import (
    validate_weight, validate_weigh_ins, validate_weekly_rate,
    validate_daily_calories, validate_body_fat
)
from .health import health_checker, metrics_collector
from .rate_limiter import check_rate_limit
from .database import SB, get_db
from .schemas import (
    NutritionCalcReq, NutritionCalcResp, GoalResp,
    MaintenanceEstimateReq, MaintenanceEstimateResp,
    PreviewAdjustmentReq, AdjustmentResult,
    SaveWeighInsReq, SubmitWeekReq, SubmitWeekResp,
    WeeklyProgress, WeeksResp, ProgressSummaryResp, JobResultResp
)
from backend.tools import nutrition_calculator, weekly_adjuster, progress_service, billing_sweeps

logger = setup_logging()

sentry_sdk.init(dsn=config.SENTRY_DSN, traces_sample_rate=0.2, environment=config.ENVIRONMENT)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    try:
        # Warm Supabase connection on startup
        if await SB.ping():
            logger.info("[lifespan] Supabase connection warm OK")
        else:
            logger.warning("[lifespan] Supabase health probe returned no data")
    except Exception as e:
        logger.error(f"[lifespan] Warmup failed: {e}")
    yield
    await SB.dispose()

app = FastAPI(title="Nutrition Coach API", version="1.0.0", lifespan=lifespan)

@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    request_id = str(uuid.uuid4())

    logger.info(
        f"Request started: {request.method} {request.url.path}",
        extra={
            "request_id": request_id,
            "endpoint": f"{request.method} {request.url.path}",
        }
    )

    try:
        response = await call_next(request)
    except Exception as e:
        log_error(logger, e, {
            "request_id": request_id,
            "endpoint": f"{request.method} {request.url.path}",
            "execution_time": (time.time() - start_time) * 1000,
        })
        metrics_collector.increment_requests()
        metrics_collector.increment_errors()
        raise

    metrics_collector.increment_requests()
    if response.status_code >= 400:
        metrics_collector.increment_errors()

    log_api_call(
        logger=logger,
        endpoint=f"{request.method} {request.url.path}",
        execution_time=(time.time() - start_time) * 1000,
        status_code=response.status_code
    )
    response.headers["X-Request-ID"] = request_id
    return response

# CORS Configuration - Restrict to known domains
ALLOWED_ORIGINS = [
    "http://localhost:5173",  # Vite dev server
    "http://localhost:3000",
    config.APP_BASE_URL,
]

if config.ENVIRONMENT == "development":
    ALLOWED_ORIGINS.append("http://127.0.0.1:5173")

app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(set(ALLOWED_ORIGINS)),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Cron-Secret"],
)

DEV_TOKENS = ("test-token", "fake-token", "dev-token")

GOAL_COLUMNS = set(GoalResp.model_fields) - {"current_week", "current_macros"}

class DevUser:
    id = "00000000-0000-0000-0000-000000000000"
    email = "test@example.com"

async def get_current_user(authorization: str = Header(None), db: Client = Depends(get_db)):
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header")

    token = authorization.split(" ", 1)[1]

    # Allow test tokens ONLY in development environment
    if config.ENVIRONMENT == "development" and token in DEV_TOKENS:
        return DevUser()

    try:
        user = db.auth.get_user(token).user
    except Exception as e:
        logger.warning(f"Authentication error: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    if user is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user

async def verify_cron_secret(x_cron_secret: str = Header(None)):
    """Scheduler-only endpoints; disabled entirely when CRON_SECRET is unset"""
    if not config.CRON_SECRET:
        raise HTTPException(status_code=503, detail="Cron jobs are not configured")
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret, config.CRON_SECRET):
        raise HTTPException(status_code=401, detail="Invalid cron secret")

def to_http_error(e: Exception, context: dict, message: str) -> HTTPException:
    """Translate tool-layer errors into HTTP responses"""
    if isinstance(e, ValidationError):
        logger.warning(f"Validation failed: {e.message}", extra=context)
        return HTTPException(status_code=422, detail={"error": e.error_code, "message": e.message, "field": e.field})
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail={"error": e.error_code, "message": e.message})
    log_error(logger, e, context)
    return HTTPException(status_code=500, detail=message)

# Nutrition

@app.post("/nutrition/calculate", response_model=NutritionCalcResp)
async def calculate_nutrition(req: NutritionCalcReq, request: Request):
    """Public calculator used before sign-up; keyed by client IP"""
    check_rate_limit(request, None, 'calculate')

    try:
        validate_weight(req.weight_kg)
        validate_body_fat(req.body_fat_percentage)
        if req.goal_type == "loss":
            validate_weekly_rate(req.rate_of_change)
        return nutrition_calculator.calculate(req)
    except Exception as e:
        raise to_http_error(e, {"endpoint": "POST /nutrition/calculate"}, "Failed to calculate nutrition goals")

@app.get("/nutrition/goal", response_model=GoalResp)
async def get_goal(request: Request, user=Depends(get_current_user), db: Client = Depends(get_db)):
    check_rate_limit(request, user.id)

    try:
        goal = progress_service.get_active_goal(db, user.id)
        return GoalResp(
            **{k: v for k, v in goal.items() if k in GOAL_COLUMNS},
            current_week=progress_service.current_week_number(goal),
            current_macros=nutrition_calculator.current_macros(goal, goal["daily_calories"]),
        )
    except Exception as e:
        raise to_http_error(e, {"user_id": user.id}, "Failed to load nutrition goal")

@app.post("/nutrition/maintenance", response_model=MaintenanceEstimateResp)
async def estimate_maintenance(req: MaintenanceEstimateReq, request: Request, user=Depends(get_current_user)):
    """Observed maintenance calories from logged weigh-ins and intake, plus a capped move towards it"""
    check_rate_limit(request, user.id, 'calculate')

    try:
        for log in req.weight_logs:
            if log.weight_kg > 0:
                validate_weight(log.weight_kg, "weight_logs")
        validate_daily_calories(req.avg_daily_calories)
        if req.current_calories is not None:
            validate_daily_calories(req.current_calories)
        return nutrition_calculator.estimate_maintenance(req)
    except Exception as e:
        raise to_http_error(e, {"user_id": user.id}, "Failed to estimate maintenance calories")

# Weekly progress

@app.post("/progress/preview", response_model=AdjustmentResult)
async def preview_adjustment(req: PreviewAdjustmentReq, request: Request, user=Depends(get_current_user)):
    """Run the weekly rule without persisting anything"""
    check_rate_limit(request, user.id)

    try:
        validate_weigh_ins(req.check_in.weigh_ins)
        validate_weekly_rate(req.goal.weekly_rate_percentage)
        validate_daily_calories(req.goal.current_calories)
        if req.previous_week_avg is not None:
            validate_weight(req.previous_week_avg, "previous_week_avg")
        return weekly_adjuster.compute(req.goal, req.check_in, req.previous_week_avg)
    except Exception as e:
        raise to_http_error(e, {"user_id": user.id}, "Failed to compute adjustment")

@app.get("/progress/weeks", response_model=WeeksResp)
async def list_weeks(request: Request, user=Depends(get_current_user), db: Client = Depends(get_db)):
    check_rate_limit(request, user.id)

    try:
        goal = progress_service.get_active_goal(db, user.id)
        weeks = progress_service.list_weeks(db, goal["id"])
        return WeeksResp(
            goal_id=goal["id"],
            current_week=progress_service.current_week_number(goal),
            weeks=[WeeklyProgress(**w) for w in weeks],
        )
    except Exception as e:
        raise to_http_error(e, {"user_id": user.id}, "Failed to load weekly progress")

@app.put("/progress/weeks/{week_number}/weigh-ins", response_model=WeeklyProgress)
async def save_weigh_ins(week_number: int, req: SaveWeighInsReq, request: Request,
                         user=Depends(get_current_user), db: Client = Depends(get_db)):
    check_rate_limit(request, user.id)
    context = {"user_id": user.id, "week_number": week_number}

    try:
        validate_weigh_ins([log.weight_kg for log in req.weight_logs], minimum=0)
        goal = progress_service.get_active_goal(db, user.id)
        return progress_service.save_weigh_ins(db, user.id, goal, week_number, req)
    except Exception as e:
        raise to_http_error(e, context, "Failed to save weigh-ins")

@app.post("/progress/weeks/{week_number}/submit", response_model=SubmitWeekResp)
async def submit_week(week_number: int, req: SubmitWeekReq, request: Request,
                      user=Depends(get_current_user), db: Client = Depends(get_db)):
    check_rate_limit(request, user.id, 'submit')
    context = {"user_id": user.id, "week_number": week_number}

    try:
        validate_weigh_ins([log.weight_kg for log in req.weight_logs])
        if req.measurements:
            validate_body_fat(req.measurements.body_fat_percentage)
        goal = progress_service.get_active_goal(db, user.id)
        result = progress_service.submit_week(db, user.id, goal, week_number, req)
    except Exception as e:
        raise to_http_error(e, context, "Failed to submit week")

    metrics_collector.record_submission(result.adjustment.adjusted)
    return result

@app.get("/progress/summary", response_model=ProgressSummaryResp)
async def progress_summary(request: Request, user=Depends(get_current_user), db: Client = Depends(get_db)):
    check_rate_limit(request, user.id)

    try:
        goal = progress_service.get_active_goal(db, user.id)
        weeks = progress_service.list_weeks(db, goal["id"])

        current_week = progress_service.current_week_number(goal)
        logged = [w for w in weeks if w.get("average_weight_kg")]
        start = goal["starting_weight_kg"]
        current_weight = logged[-1]["average_weight_kg"] if logged else start

        target = goal.get("target_weight_kg")
        progress_pct = 0.0
        if target and target != start:
            progress_pct = max(0.0, min(100.0, (current_weight - start) / (target - start) * 100))

        return ProgressSummaryResp(
            goal_id=goal["id"],
            current_week=current_week,
            current_weight_kg=current_weight,
            weight_progress_pct=progress_pct,
            estimated_total_weeks=nutrition_calculator.estimated_total_weeks(goal, weeks, current_week, current_weight),
            current_macros=nutrition_calculator.current_macros(goal, goal["daily_calories"]),
            summary=nutrition_calculator.phase_summary(goal, weeks),
        )
    except Exception as e:
        raise to_http_error(e, {"user_id": user.id}, "Failed to load progress summary")

# Scheduled jobs

@app.post("/jobs/payment-deadlines", response_model=JobResultResp, dependencies=[Depends(verify_cron_secret)])
async def payment_deadlines_job(request: Request, db: Client = Depends(get_db)):
    check_rate_limit(request, None, 'jobs')
    now = datetime.now(timezone.utc)
    try:
        results = billing_sweeps.run_payment_deadline_sweep(db, now)
    except Exception as e:
        log_error(logger, e, {"job": "payment_deadlines"})
        raise HTTPException(status_code=500, detail="Payment deadline sweep failed")
    return JobResultResp(job="payment_deadlines", ran_at=now, results=results)

@app.post("/jobs/billing-reminders", response_model=JobResultResp, dependencies=[Depends(verify_cron_secret)])
async def billing_reminders_job(request: Request, db: Client = Depends(get_db)):
    check_rate_limit(request, None, 'jobs')
    now = datetime.now(timezone.utc)
    try:
        results = billing_sweeps.run_billing_reminders(db, now)
    except Exception as e:
        log_error(logger, e, {"job": "billing_reminders"})
        raise HTTPException(status_code=500, detail="Billing reminder sweep failed")
    return JobResultResp(job="billing_reminders", ran_at=now, results=results)

# Health

# 200ms cache to prevent health check stampedes
@lru_cache(maxsize=1)
def _health_cache_bucket():
    return int(time.time() * 5)

@app.get("/health")
async def health():
    _ = _health_cache_bucket()
    ok = await SB.ping()
    body = {
        "status": "healthy" if ok else "unhealthy",
        "database": "connected" if ok else "disconnected",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    return JSONResponse(body, status_code=200 if ok else 503)

@app.get("/health/quick")
async def health_quick():
    """Quick health check for load balancer"""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": metrics_collector.get_metrics()["uptime_human"],
    }

@app.get("/health/detailed")
async def health_detailed():
    report = await health_checker.run_all_checks()
    return JSONResponse(report, status_code=200 if report["status"] == "healthy" else 503)

@app.get("/metrics")
async def metrics():
    """Application metrics endpoint"""
    return metrics_collector.get_metrics()
