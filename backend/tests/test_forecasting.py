from ricemart.services.forecasting import (
    FORECAST_CONFIDENCE,
    MIN_HISTORY_PERIODS,
    forecast_demand,
)


class TestForecastDemand:

    def test_short_history_returns_zero_confidence(self):
        result = forecast_demand([10, 20], low_stock_threshold=50)

        assert result.confidence == 0
        assert result.predicted_demand == 0
        assert result.recommended_reorder == 50
        assert result.reorder_point == 0
        assert not result.has_history

    def test_empty_history(self):
        result = forecast_demand([], low_stock_threshold=5)
        assert result.periods_used == 0
        assert result.recommended_reorder == 5

    def test_moving_average_with_growth(self):
        # avg(100, 110, 120) = 110, * 1.1 = 121
        result = forecast_demand([100, 110, 120], low_stock_threshold=50)

        assert result.predicted_demand == 121
        assert result.confidence == FORECAST_CONFIDENCE
        assert result.recommended_reorder == 242
        assert result.reorder_point == 61
        assert result.has_history

    def test_only_recent_periods_count(self):
        result = forecast_demand([1000, 1000, 10, 10, 10], low_stock_threshold=0)
        assert result.periods_used == MIN_HISTORY_PERIODS
        assert result.predicted_demand == 11

    def test_threshold_floors_reorder(self):
        result = forecast_demand([1, 1, 1], low_stock_threshold=40)
        assert result.predicted_demand == 1
        assert result.recommended_reorder == 40

    def test_half_rounds_up(self):
        # avg(5, 5, 5) * 1.1 = 5.5
        assert forecast_demand([5, 5, 5], low_stock_threshold=0).predicted_demand == 6

    def test_to_dict(self):
        data = forecast_demand([30, 30, 30], low_stock_threshold=10).to_dict()
        assert set(data) == {"predicted_demand", "confidence", "recommended_reorder", "reorder_point", "periods_used"}
