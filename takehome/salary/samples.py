"""
Illustrative compensation profiles served by GET /api/salary/sample-calculations.

Three shapes that exercise the interesting branches: a low earner claiming 80C
and 80D, a mid earner around the new-regime 87A threshold, and a high earner
with capital gains (surcharge + special-rate income excluded from 87A).
"""
from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict

from takehome.salary.schemas import CompensationProfile


class SampleProfile(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    ctc: int                       # cost to company, for display only
    profile: CompensationProfile


SAMPLE_PROFILES: List[SampleProfile] = [
    SampleProfile(
        name="Low Income with 80C",
        ctc=480_000,
        profile=CompensationProfile(
            basic=192_000,
            hra=96_000,
            conveyance=24_000,
            special_allowances=168_000,
            investments={"80C": 150_000, "80D": 25_000},
            rent_paid=96_000,
            lives_in_metro=True,
            age=30,
            state="Maharashtra",
        ),
    ),
    SampleProfile(
        name="Mid Income (12L)",
        ctc=1_200_000,
        profile=CompensationProfile(
            basic=480_000,
            hra=240_000,
            conveyance=24_000,
            special_allowances=360_000,
            lta=20_000,
            bonus=60_000,
            other_taxable=16_000,
            investments={"80C": 150_000, "80D": 25_000},
            rent_paid=288_000,
            lives_in_metro=True,
            age=30,
            state="Maharashtra",
        ),
    ),
    SampleProfile(
        name="High Income with STCG/LTCG",
        ctc=3_500_000,
        profile=CompensationProfile(
            basic=1_200_000,
            hra=600_000,
            conveyance=60_000,
            special_allowances=1_200_000,
            lta=40_000,
            bonus=300_000,
            other_taxable=100_000,
            nps_employee=50_000,
            investments={"80C": 150_000, "80D": 25_000},
            rent_paid=720_000,
            lives_in_metro=True,
            age=40,
            state="Karnataka",
            stcg=300_000,
            ltcg=200_000,
        ),
    ),
]
