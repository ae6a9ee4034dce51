from typing import List, Optional, Literal
from pydantic import BaseModel, Field
from datetime import datetime, date

GoalType = Literal["loss", "gain", "maintenance"]
Sex = Literal["male", "female"]

# Weekly adjustment
class GoalContext(BaseModel):
    """The slice of the active goal the weekly rule needs"""
    starting_weight_kg: float = Field(..., gt=0)
    goal_type: GoalType
    weekly_rate_percentage: float = Field(..., ge=0)
    current_calories: int = Field(..., gt=0)

class WeekCheckIn(BaseModel):
    week_number: int = Field(..., ge=1)
    weigh_ins: List[float]
    followed_calories: bool
    tracked_accurately: bool
    is_diet_break_week: bool = False

class AdjustmentResult(BaseModel):
    week_number: int
    average_weight_kg: float
    reference_weight_kg: Optional[float] = None
    weight_change_kg: Optional[float] = None
    weight_change_percentage: Optional[float] = None
    expected_change_kg: Optional[float] = None
    calorie_adjustment: int = 0
    new_daily_calories: int
    adjusted: bool = False
    needs_review: bool = False
    is_diet_break_week: bool = False
    reason: str = ""

class PreviewAdjustmentReq(BaseModel):
    goal: GoalContext
    check_in: WeekCheckIn
    previous_week_avg: Optional[float] = None

# Weekly progress
class WeighInLog(BaseModel):
    log_date: Optional[date] = None
    weight_kg: float

class Measurements(BaseModel):
    waist_cm: Optional[float] = None
    chest_cm: Optional[float] = None
    arms_cm: Optional[float] = None
    glutes_cm: Optional[float] = None
    thigh_cm: Optional[float] = None
    calfs_cm: Optional[float] = None
    body_fat_percentage: Optional[float] = None
    daily_steps_avg: Optional[int] = None

class SaveWeighInsReq(BaseModel):
    weight_logs: List[WeighInLog]
    measurements: Optional[Measurements] = None
    notes: Optional[str] = None

class SubmitWeekReq(BaseModel):
    weight_logs: List[WeighInLog]
    followed_calories: bool
    tracked_accurately: bool
    measurements: Optional[Measurements] = None
    notes: Optional[str] = None

class WeeklyProgress(BaseModel):
    id: Optional[str] = None
    goal_id: str
    week_number: int
    week_start_date: Optional[date] = None
    weight_logs: List[WeighInLog] = []
    average_weight_kg: Optional[float] = None
    weight_change_kg: Optional[float] = None
    weight_change_percentage: Optional[float] = None
    expected_change_kg: Optional[float] = None
    followed_calories: Optional[bool] = None
    tracked_accurately: Optional[bool] = None
    calorie_adjustment: Optional[int] = 0
    new_daily_calories: Optional[int] = None
    is_diet_break_week: Optional[bool] = False
    needs_review: Optional[bool] = False
    adjustment_reason: Optional[str] = None
    notes: Optional[str] = None

class SubmitWeekResp(BaseModel):
    progress: WeeklyProgress
    adjustment: AdjustmentResult
    goal_updated: bool

class WeeksResp(BaseModel):
    goal_id: str
    current_week: int
    weeks: List[WeeklyProgress]

# Goal calculator
class NutritionCalcReq(BaseModel):
    weight_kg: float
    height_cm: float = Field(..., gt=0)
    age: int = Field(..., gt=0, lt=120)
    sex: Sex
    body_fat_percentage: Optional[float] = None
    activity_multiplier: float = Field(..., ge=1.0, le=2.5)
    goal_type: GoalType
    rate_of_change: float = Field(0, ge=0)
    protein_per_kg: float = Field(..., gt=0, le=4)
    use_ffm: bool = False
    fat_percentage: float = Field(..., gt=0, lt=100)
    target_goal_type: Optional[Literal["weight", "bodyfat"]] = None
    target_value: Optional[float] = None
    diet_break_frequency_weeks: Optional[int] = None
    diet_break_duration_weeks: Optional[int] = None

class NutritionCalcResp(BaseModel):
    bmr: int
    tdee: int
    calories: int
    protein: int
    fat: int
    carbs: int
    fiber: int
    deficit_percent: float
    projected_weeks: Optional[int] = None

class MaintenanceEstimateReq(BaseModel):
    """Dated weigh-ins plus the average intake over the same stretch"""
    weight_logs: List[WeighInLog] = Field(default_factory=list)
    avg_daily_calories: float
    current_calories: Optional[int] = None
    max_change: int = Field(300, ge=50, le=1000)

class MaintenanceEstimateResp(BaseModel):
    starting_average_kg: float
    current_average_kg: float
    days: int
    weekly_change_kg: float
    maintenance_calories: int
    suggested_adjustment: Optional[int] = None
    new_target_calories: Optional[int] = None

class CurrentMacros(BaseModel):
    calories: int
    protein_g: int
    fat_g: int
    carbs_g: int

class GoalResp(BaseModel):
    id: str
    phase_name: Optional[str] = None
    goal_type: GoalType
    start_date: Optional[date] = None
    starting_weight_kg: float
    target_weight_kg: Optional[float] = None
    weekly_rate_percentage: Optional[float] = None
    daily_calories: int
    current_week: int
    diet_breaks_enabled: bool = False
    diet_break_frequency_weeks: Optional[int] = None
    diet_break_duration_weeks: Optional[int] = None
    current_macros: CurrentMacros

class PhaseSummary(BaseModel):
    start_weight: float
    end_weight: float
    total_change: float
    target_change: float
    percent_of_target: float
    average_adherence: float
    diet_breaks_taken: int
    avg_daily_calories: float

class ProgressSummaryResp(BaseModel):
    goal_id: str
    current_week: int
    current_weight_kg: float
    weight_progress_pct: float
    estimated_total_weeks: int
    current_macros: CurrentMacros
    summary: Optional[PhaseSummary] = None

# Jobs
class JobResultResp(BaseModel):
    job: str
    ran_at: datetime
    results: dict
