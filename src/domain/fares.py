"""
Fare split (Strategy Pattern)
=============================

Fare *calculation* (distance -> price) belongs to the booking front end;
this module only splits the quoted rider fare into what the driver earns
once platform commission and GST are deducted:

    driver_fare = quoted / (1 + commission_rate + gst_rate)

The three figures stay distinct on the ride: ``quoted_fare`` (rider
pays), ``driver_fare`` (driver payout), ``actual_fare`` (settled amount).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class FareBreakdown:
    quoted_fare: float
    driver_fare: float
    commission: float
    gst: float


class FareSplitStrategy(ABC):
    @abstractmethod
    def split(self, quoted_fare: float) -> FareBreakdown: ...


class CommissionSplit(FareSplitStrategy):
    def __init__(self, commission_rate: float = 0.10, gst_rate: float = 0.05):
        self.commission_rate = commission_rate
        self.gst_rate = gst_rate

    def split(self, quoted_fare: float) -> FareBreakdown:
        base = quoted_fare / (1 + self.commission_rate + self.gst_rate)
        commission = base * self.commission_rate
        gst = base * self.gst_rate
        return FareBreakdown(
            quoted_fare=round(quoted_fare, 2),
            driver_fare=round(base, 2),
            commission=round(commission, 2),
            gst=round(gst, 2),
        )
