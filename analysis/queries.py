"""
Query catalog - the ride and food delivery report expressed over the primitives.

Every query takes the relation store plus keyword parameters and returns a
list of result records (plain dicts). Queries never modify the store.
"""

import inspect
import logging
from typing import Dict, Any, List, Optional, Callable, Mapping

from analysis.calculations.grouping import (
    group_aggregate,
    count,
    sum_of,
    avg_of,
    min_of,
    max_of,
    count_distinct,
    field_equals,
    with_ratio,
    derive,
    safe_ratio,
)
from analysis.calculations.windows import (
    rank,
    running_total,
    moving_average,
    lag,
    lag_difference,
    order_rows,
    ordered_partitions,
)
from analysis.calculations.percentile import above_percentile
from analysis.calculations.time_buckets import (
    hour_of_day,
    day_of_week,
    day_name,
    calendar_date,
    year_month,
    day_type,
)
from analysis.calculations.undefined import is_undefined
from analysis.settings import EngineConfig
from storage.relation_store import RelationStore


logger = logging.getLogger(__name__)

is_completed_ride = field_equals('ride_status', 'Completed')
is_canceled_ride = field_equals('ride_status', 'Canceled')
is_completed_order = field_equals('order_status', 'Completed')
is_canceled_order = field_equals('order_status', 'Canceled')
is_refunded_order = field_equals('order_status', 'Refunded')


class UnknownQueryError(LookupError):
    """Raised when a query name is not in the catalog."""
    pass


def _top_ranks(rows: List[Dict[str, Any]], limit: Optional[int]) -> List[Dict[str, Any]]:
    """Order by rank; with a limit keep every row ranked within it, ties included."""
    ordered = order_rows(rows, 'rank')
    if limit is None:
        return ordered
    return [row for row in ordered if row['rank'] <= limit]


def _in_partition_order(rows, partition_by, order_by) -> List[Dict[str, Any]]:
    """Rows grouped by partition (first appearance), each partition in order_by order."""
    rows = list(rows)
    partitions = ordered_partitions(rows, partition_by, order_by)
    return [dict(rows[position]) for positions in partitions.values() for position in positions]


def _user_spend(rows, value_field: str, where) -> List[Dict[str, Any]]:
    return group_aggregate(rows, 'user_id', {
        'total_spend': sum_of(value_field),
        'transactions': count(),
    }, where=where)


# ---------------------------------------------------------------------------
# Rides
# ---------------------------------------------------------------------------

def user_ride_spend_ranking(store: RelationStore, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Users ranked by total fare of completed rides (RANK semantics)."""
    spend = group_aggregate(store.scan('ride'), 'user_id', {
        'total_spend': sum_of('fare_amount'),
        'completed_rides': count(),
    }, where=is_completed_ride)
    return _top_ranks(rank(spend, 'total_spend'), limit)


def driver_revenue_ranking(store: RelationStore, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Drivers ranked by completed-ride revenue, with name and vehicle."""
    revenue = group_aggregate(store.scan('ride'), 'driver_id', {
        'total_revenue': sum_of('fare_amount'),
        'completed_rides': count(),
        'avg_fare': avg_of('fare_amount'),
        'total_distance_km': sum_of('distance_km'),
    }, where=is_completed_ride)

    enriched = derive(
        revenue,
        driver_name=lambda r: store.get('driver', r['driver_id'])['name'],
        vehicle_type=lambda r: store.get('driver', r['driver_id'])['vehicle_type'],
    )
    return _top_ranks(rank(enriched, 'total_revenue'), limit)


def driver_efficiency(store: RelationStore) -> List[Dict[str, Any]]:
    """
    Completed-to-canceled ratio per driver.

    A driver with no canceled rides has an UNDEFINED ratio.
    """
    stats = group_aggregate(store.scan('ride'), 'driver_id', {
        'completed_rides': count(is_completed_ride),
        'canceled_rides': count(is_canceled_ride),
    })
    stats = derive(stats, driver_name=lambda r: store.get('driver', r['driver_id'])['name'])
    return with_ratio(stats, 'efficiency_ratio', 'completed_rides', 'canceled_rides', digits=2)


def driver_cancellation_rate(store: RelationStore, min_rides: int = 1) -> List[Dict[str, Any]]:
    """Share of each driver's rides that were canceled, highest first."""
    stats = group_aggregate(store.scan('ride'), 'driver_id', {
        'total_rides': count(),
        'canceled_rides': count(is_canceled_ride),
    })
    stats = [row for row in stats if row['total_rides'] >= min_rides]
    stats = with_ratio(stats, 'cancellation_pct', 'canceled_rides', 'total_rides', scale=100, digits=2)
    return order_rows(stats, 'cancellation_pct', descending=True)


def rides_by_hour(store: RelationStore) -> List[Dict[str, Any]]:
    """Completed rides per hour of day with demand rank (1 = peak hour)."""
    hourly = group_aggregate(store.scan('ride'), {'hour': lambda r: hour_of_day(r['ride_date_time'])}, {
        'ride_count': count(),
        'total_fare': sum_of('fare_amount'),
        'avg_fare': avg_of('fare_amount'),
    }, where=is_completed_ride)
    hourly = rank(hourly, 'ride_count', output='demand_rank')
    return order_rows(hourly, 'hour')


def rides_by_day_of_week(store: RelationStore) -> List[Dict[str, Any]]:
    """Completed rides and revenue per weekday, Sunday (0) first."""
    daily = group_aggregate(store.scan('ride'), {
        'day_of_week': lambda r: day_of_week(r['ride_date_time']),
        'day_name': lambda r: day_name(r['ride_date_time']),
    }, {
        'ride_count': count(),
        'total_fare': sum_of('fare_amount'),
    }, where=is_completed_ride)
    return order_rows(daily, 'day_of_week')


def daily_ride_revenue(store: RelationStore, window: int = 7) -> List[Dict[str, Any]]:
    """
    Completed-ride revenue per calendar day with cumulative and trailing totals.

    The trailing frame counts days that have rides, not calendar days.
    """
    daily = group_aggregate(store.scan('ride'), {'ride_date': lambda r: calendar_date(r['ride_date_time'])}, {
        'revenue': sum_of('fare_amount'),
        'ride_count': count(),
    }, where=is_completed_ride)
    daily = order_rows(daily, 'ride_date')
    daily = running_total(daily, 'revenue', 'ride_date', output='cumulative_revenue')
    daily = running_total(daily, 'revenue', 'ride_date', window=window, output='rolling_revenue')
    return moving_average(daily, 'revenue', 'ride_date', window=window, output='rolling_avg_revenue')


def monthly_ride_revenue(store: RelationStore) -> List[Dict[str, Any]]:
    """Completed-ride revenue per month with month-over-month growth."""
    monthly = group_aggregate(store.scan('ride'), {'month': lambda r: year_month(r['ride_date_time'])}, {
        'revenue': sum_of('fare_amount'),
        'ride_count': count(),
        'active_riders': count_distinct('user_id'),
    }, where=is_completed_ride)
    monthly = order_rows(monthly, 'month')
    monthly = lag(monthly, 'revenue', order_by='month', output='previous_revenue')
    monthly = lag_difference(monthly, 'revenue', order_by='month', output='revenue_change')
    return with_ratio(monthly, 'growth_pct', 'revenue_change', 'previous_revenue', scale=100, digits=2)


def fare_per_km_by_vehicle(store: RelationStore) -> List[Dict[str, Any]]:
    """Average fare per kilometre of completed rides, by driver vehicle type."""
    stats = group_aggregate(
        store.scan('ride'),
        {'vehicle_type': lambda r: store.get('driver', r['driver_id'])['vehicle_type']},
        {
            'ride_count': count(),
            'total_fare': sum_of('fare_amount'),
            'total_distance_km': sum_of('distance_km'),
            'longest_ride_km': max_of('distance_km'),
        },
        where=is_completed_ride
    )
    stats = with_ratio(stats, 'fare_per_km', 'total_fare', 'total_distance_km', digits=2)
    return order_rows(stats, 'vehicle_type')


def driver_rank_by_vehicle_type(store: RelationStore, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Drivers ranked by completed-ride revenue within their vehicle type."""
    revenue = group_aggregate(store.scan('ride'), 'driver_id', {
        'total_revenue': sum_of('fare_amount'),
        'completed_rides': count(),
    }, where=is_completed_ride)
    revenue = derive(
        revenue,
        vehicle_type=lambda r: store.get('driver', r['driver_id'])['vehicle_type'],
        driver_rating=lambda r: store.get('driver', r['driver_id'])['rating'],
    )
    ranked = rank(revenue, 'total_revenue', partition_by='vehicle_type')
    if limit is not None:
        ranked = [row for row in ranked if row['rank'] <= limit]
    return _in_partition_order(ranked, 'vehicle_type', 'rank')


def user_ride_gaps(store: RelationStore, unit: str = 'hours') -> List[Dict[str, Any]]:
    """Time since each user's previous completed ride (UNDEFINED for the first)."""
    rides = [
        {'user_id': r['user_id'], 'ride_id': r['ride_id'], 'ride_date_time': r['ride_date_time']}
        for r in store.scan('ride') if is_completed_ride(r)
    ]
    gaps = lag_difference(rides, 'ride_date_time', partition_by='user_id', unit=unit,
                          output=f'{unit}_since_previous')
    return _in_partition_order(gaps, 'user_id', 'ride_date_time')


def top_ride_spenders(store: RelationStore, p: float = 0.8) -> List[Dict[str, Any]]:
    """Users whose completed-ride spend is strictly above the p-th percentile."""
    threshold, selected = above_percentile(
        _user_spend(store.scan('ride'), 'fare_amount', is_completed_ride), 'total_spend', p
    )
    selected = derive(selected, threshold=lambda r: threshold)
    return order_rows(selected, 'total_spend', descending=True)


# ---------------------------------------------------------------------------
# Food orders
# ---------------------------------------------------------------------------

def restaurant_revenue_ranking(store: RelationStore, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Restaurants ranked by completed-order revenue."""
    revenue = group_aggregate(store.scan('food_order'), 'restaurant_id', {
        'total_revenue': sum_of('total_price'),
        'completed_orders': count(),
        'avg_order_value': avg_of('total_price'),
    }, where=is_completed_order)
    revenue = derive(
        revenue,
        restaurant_name=lambda r: store.get('restaurant', r['restaurant_id'])['name'],
        cuisine_type=lambda r: store.get('restaurant', r['restaurant_id'])['cuisine_type'],
    )
    return _top_ranks(rank(revenue, 'total_revenue'), limit)


def restaurant_rank_by_cuisine(store: RelationStore, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Restaurants ranked by completed-order revenue within their cuisine."""
    revenue = group_aggregate(store.scan('food_order'), 'restaurant_id', {
        'total_revenue': sum_of('total_price'),
        'completed_orders': count(),
    }, where=is_completed_order)
    revenue = derive(
        revenue,
        restaurant_name=lambda r: store.get('restaurant', r['restaurant_id'])['name'],
        cuisine_type=lambda r: store.get('restaurant', r['restaurant_id'])['cuisine_type'],
    )
    ranked = rank(revenue, 'total_revenue', partition_by='cuisine_type')
    if limit is not None:
        ranked = [row for row in ranked if row['rank'] <= limit]
    return _in_partition_order(ranked, 'cuisine_type', 'rank')


def restaurant_order_status(store: RelationStore) -> List[Dict[str, Any]]:
    """Completed, canceled and refunded order counts per restaurant with rates."""
    stats = group_aggregate(store.scan('food_order'), 'restaurant_id', {
        'total_orders': count(),
        'completed_orders': count(is_completed_order),
        'canceled_orders': count(is_canceled_order),
        'refunded_orders': count(is_refunded_order),
        'refunded_value': sum_of('total_price', where=is_refunded_order),
    })
    stats = with_ratio(stats, 'completion_pct', 'completed_orders', 'total_orders', scale=100, digits=2)
    stats = with_ratio(stats, 'refund_pct', 'refunded_orders', 'total_orders', scale=100, digits=2)
    return with_ratio(stats, 'completed_to_canceled', 'completed_orders', 'canceled_orders', digits=2)


def orders_by_hour(store: RelationStore) -> List[Dict[str, Any]]:
    """Completed orders per hour of day with demand rank (1 = peak hour)."""
    hourly = group_aggregate(store.scan('food_order'), {'hour': lambda r: hour_of_day(r['order_date_time'])}, {
        'order_count': count(),
        'revenue': sum_of('total_price'),
        'avg_order_value': avg_of('total_price'),
    }, where=is_completed_order)
    hourly = rank(hourly, 'order_count', output='demand_rank')
    return order_rows(hourly, 'hour')


def restaurant_weekday_weekend(store: RelationStore) -> List[Dict[str, Any]]:
    """Completed orders per restaurant split into weekday and weekend."""
    stats = group_aggregate(store.scan('food_order'), {
        'restaurant_id': 'restaurant_id',
        'day_type': lambda r: day_type(r['order_date_time']),
    }, {
        'order_count': count(),
        'revenue': sum_of('total_price'),
        'avg_order_value': avg_of('total_price'),
    }, where=is_completed_order)
    return _in_partition_order(stats, 'restaurant_id', 'day_type')


def user_reorder_gaps(store: RelationStore, unit: str = 'minutes') -> List[Dict[str, Any]]:
    """Time between consecutive completed orders of the same user."""
    orders = [
        {'user_id': r['user_id'], 'order_id': r['order_id'], 'order_date_time': r['order_date_time']}
        for r in store.scan('food_order') if is_completed_order(r)
    ]
    gaps = lag_difference(orders, 'order_date_time', partition_by='user_id', unit=unit,
                          output=f'{unit}_since_previous')
    return _in_partition_order(gaps, 'user_id', 'order_date_time')


def daily_food_revenue(store: RelationStore, window: int = 7) -> List[Dict[str, Any]]:
    """Completed-order revenue per day with cumulative and trailing totals."""
    daily = group_aggregate(store.scan('food_order'), {'order_date': lambda r: calendar_date(r['order_date_time'])}, {
        'revenue': sum_of('total_price'),
        'delivery_fees': sum_of('delivery_fee'),
        'order_count': count(),
    }, where=is_completed_order)
    daily = order_rows(daily, 'order_date')
    daily = running_total(daily, 'revenue', 'order_date', output='cumulative_revenue')
    daily = running_total(daily, 'revenue', 'order_date', window=window, output='rolling_revenue')
    return moving_average(daily, 'revenue', 'order_date', window=window, output='rolling_avg_revenue')


def monthly_food_revenue(store: RelationStore) -> List[Dict[str, Any]]:
    """Completed-order revenue, fees and distinct customers per month."""
    monthly = group_aggregate(store.scan('food_order'), {'month': lambda r: year_month(r['order_date_time'])}, {
        'revenue': sum_of('total_price'),
        'delivery_fees': sum_of('delivery_fee'),
        'order_count': count(),
        'active_customers': count_distinct('user_id'),
    }, where=is_completed_order)
    monthly = order_rows(monthly, 'month')
    monthly = lag(monthly, 'revenue', order_by='month', output='previous_revenue')
    monthly = lag_difference(monthly, 'revenue', order_by='month', output='revenue_change')
    return with_ratio(monthly, 'growth_pct', 'revenue_change', 'previous_revenue', scale=100, digits=2)


def delivery_fee_by_cuisine(store: RelationStore) -> List[Dict[str, Any]]:
    """Delivery fee level and share of order value per cuisine."""
    stats = group_aggregate(
        store.scan('food_order'),
        {'cuisine_type': lambda r: store.get('restaurant', r['restaurant_id'])['cuisine_type']},
        {
            'order_count': count(),
            'avg_delivery_fee': avg_of('delivery_fee'),
            'min_delivery_fee': min_of('delivery_fee'),
            'max_delivery_fee': max_of('delivery_fee'),
            'total_delivery_fees': sum_of('delivery_fee'),
            'total_order_value': sum_of('total_price'),
        },
        where=is_completed_order
    )
    stats = with_ratio(stats, 'fee_share_pct', 'total_delivery_fees', 'total_order_value', scale=100, digits=2)
    return order_rows(stats, 'avg_delivery_fee', descending=True)


def user_running_food_spend(store: RelationStore) -> List[Dict[str, Any]]:
    """Each user's cumulative completed-order spend, order by order."""
    orders = [
        {
            'user_id': r['user_id'],
            'order_id': r['order_id'],
            'order_date_time': r['order_date_time'],
            'total_price': r['total_price'],
        }
        for r in store.scan('food_order') if is_completed_order(r)
    ]
    orders = rank(orders, 'order_date_time', partition_by='user_id', method='row_number',
                  descending=False, output='order_number')
    orders = running_total(orders, 'total_price', 'order_date_time', partition_by='user_id',
                           output='cumulative_spend')
    return _in_partition_order(orders, 'user_id', 'order_number')


def top_food_spenders(store: RelationStore, p: float = 0.8) -> List[Dict[str, Any]]:
    """Users whose completed-order spend is strictly above the p-th percentile."""
    threshold, selected = above_percentile(
        _user_spend(store.scan('food_order'), 'total_price', is_completed_order), 'total_spend', p
    )
    selected = derive(selected, threshold=lambda r: threshold)
    return order_rows(selected, 'total_spend', descending=True)


# ---------------------------------------------------------------------------
# Cross-platform
# ---------------------------------------------------------------------------

def combined_user_spend(store: RelationStore, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Users ranked by completed ride fares plus completed order totals."""
    ride_spend = {
        row['user_id']: row['total_spend']
        for row in _user_spend(store.scan('ride'), 'fare_amount', is_completed_ride)
    }
    food_spend = {
        row['user_id']: row['total_spend']
        for row in _user_spend(store.scan('food_order'), 'total_price', is_completed_order)
    }

    users = list(ride_spend)
    users.extend(user for user in food_spend if user not in ride_spend)

    combined = [
        {
            'user_id': user,
            'ride_spend': ride_spend.get(user, 0),
            'food_spend': food_spend.get(user, 0),
            'total_spend': ride_spend.get(user, 0) + food_spend.get(user, 0),
            'uses_both': user in ride_spend and user in food_spend,
        }
        for user in users
    ]
    combined = derive(combined, food_share_pct=lambda r: _rounded(safe_ratio(r['food_spend'], r['total_spend'], 100)))
    return _top_ranks(rank(combined, 'total_spend'), limit)


def _rounded(value: Any, digits: int = 2) -> Any:
    return value if is_undefined(value) else round(value, digits)


QUERY_CATALOG: Dict[str, Callable[..., List[Dict[str, Any]]]] = {
    'user_ride_spend_ranking': user_ride_spend_ranking,
    'driver_revenue_ranking': driver_revenue_ranking,
    'driver_efficiency': driver_efficiency,
    'driver_cancellation_rate': driver_cancellation_rate,
    'rides_by_hour': rides_by_hour,
    'rides_by_day_of_week': rides_by_day_of_week,
    'daily_ride_revenue': daily_ride_revenue,
    'monthly_ride_revenue': monthly_ride_revenue,
    'fare_per_km_by_vehicle': fare_per_km_by_vehicle,
    'driver_rank_by_vehicle_type': driver_rank_by_vehicle_type,
    'user_ride_gaps': user_ride_gaps,
    'top_ride_spenders': top_ride_spenders,
    'restaurant_revenue_ranking': restaurant_revenue_ranking,
    'restaurant_rank_by_cuisine': restaurant_rank_by_cuisine,
    'restaurant_order_status': restaurant_order_status,
    'orders_by_hour': orders_by_hour,
    'restaurant_weekday_weekend': restaurant_weekday_weekend,
    'user_reorder_gaps': user_reorder_gaps,
    'daily_food_revenue': daily_food_revenue,
    'monthly_food_revenue': monthly_food_revenue,
    'delivery_fee_by_cuisine': delivery_fee_by_cuisine,
    'user_running_food_spend': user_running_food_spend,
    'top_food_spenders': top_food_spenders,
    'combined_user_spend': combined_user_spend,
}

# Engine-wide settings and the query parameter each one feeds
CONFIG_PARAMETERS = {
    'percentile': 'p',
    'rolling_window': 'window',
    'top_n': 'limit',
}


def list_queries() -> Dict[str, str]:
    """Query name -> first line of its docstring."""
    summaries = {}
    for name, func in QUERY_CATALOG.items():
        doc = inspect.getdoc(func) or ''
        summaries[name] = doc.splitlines()[0] if doc else ''
    return summaries


def resolve_params(
    name: str,
    config: Optional[EngineConfig] = None,
    params: Optional[Mapping[str, Any]] = None
) -> Dict[str, Any]:
    """
    Merge parameters for a query: engine defaults < per-query YAML < explicit.

    Only parameters the query accepts are passed on.
    """
    if name not in QUERY_CATALOG:
        raise UnknownQueryError(f"Unknown query {name!r}")

    accepted = set(inspect.signature(QUERY_CATALOG[name]).parameters) - {'store'}
    resolved: Dict[str, Any] = {}

    if config is not None:
        for setting, param in CONFIG_PARAMETERS.items():
            if param in accepted:
                resolved[param] = getattr(config, setting)
        resolved.update(config.params_for(name))

    if params:
        resolved.update(params)

    unexpected = set(resolved) - accepted
    if unexpected:
        raise TypeError(f"Query {name!r} got unexpected parameters: {sorted(unexpected)}")

    return resolved


def run_query(
    store: RelationStore,
    name: str,
    config: Optional[EngineConfig] = None,
    **params: Any
) -> List[Dict[str, Any]]:
    """
    Run a catalog query by name.

    Raises:
        UnknownQueryError: If the name is not in QUERY_CATALOG
        NotFoundError: If a join hits a missing driver or restaurant
    """
    resolved = resolve_params(name, config, params)
    logger.debug("Running query %s with %s", name, resolved)
    results = QUERY_CATALOG[name](store, **resolved)
    logger.debug("Query %s returned %d rows", name, len(results))
    return results
