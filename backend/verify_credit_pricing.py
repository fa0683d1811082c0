from datetime import datetime, timezone

from zhinao_geo.services.credits import (
    credit_cost,
    free_credits_remaining,
    has_enough_credits,
    month_start,
    paid_credits,
)


def main() -> None:
    assert credit_cost("monitoring", 1) == 2
    assert credit_cost("monitoring", 3) == 6
    assert credit_cost("diagnosis") == 5
    assert credit_cost("simulation") == 3
    assert credit_cost("monitoring", 2, {"monitoring": 4, "diagnosis": 5, "simulation": 3}) == 8

    assert has_enough_credits(6, "monitoring", 3)
    assert not has_enough_credits(5, "monitoring", 3)

    free = free_credits_remaining(10, 4)
    assert free == 6
    assert paid_credits(25, free) == 19
    assert paid_credits(3, free) == 0

    now = datetime(2026, 3, 1, 2, 0, tzinfo=timezone.utc)
    assert month_start(now, "UTC") == datetime(2026, 3, 1, tzinfo=timezone.utc)
    # 10:00 local on 1 March in Shanghai, month began at 16:00 UTC on 28 Feb
    assert month_start(now, "Asia/Shanghai") == datetime(2026, 2, 28, 16, 0, tzinfo=timezone.utc)

    print("OK")
    print(f"monitoring x3: {credit_cost('monitoring', 3)} credits")
    print(f"free remaining: {free}, paid: {paid_credits(25, free)}")


if __name__ == "__main__":
    main()
