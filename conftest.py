"""
Shared fixtures: a small, hand-checkable ride and food delivery dataset.

Jan 1 2024 is a Monday, so Jan 6 is a Saturday, Jan 7 a Sunday and
Feb 3 a Saturday.
"""

from datetime import datetime

import pytest

from storage.relation_store import RelationStore


def make_drivers():
    return [
        {'driver_id': 1, 'name': 'Alice', 'rating': 4.8, 'vehicle_type': 'Car'},
        {'driver_id': 2, 'name': 'Bob', 'rating': 4.5, 'vehicle_type': 'Bike'},
        {'driver_id': 3, 'name': 'Cara', 'rating': 4.9, 'vehicle_type': 'Car'},
    ]


def make_restaurants():
    return [
        {'restaurant_id': 10, 'name': 'Spice Hub', 'cuisine_type': 'Indian',
         'location': 'Downtown', 'rating': 4.5},
        {'restaurant_id': 11, 'name': 'Pasta Place', 'cuisine_type': 'Italian',
         'location': 'Uptown', 'rating': 4.2},
        {'restaurant_id': 12, 'name': 'Curry Corner', 'cuisine_type': 'Indian',
         'location': 'Midtown', 'rating': 3.9},
    ]


def make_rides():
    return [
        {'ride_id': 101, 'driver_id': 1, 'user_id': 1, 'pickup_location': 'A', 'dropoff_location': 'B',
         'distance_km': 10.0, 'fare_amount': 100.0, 'ride_status': 'Completed',
         'ride_date_time': datetime(2024, 1, 6, 8, 30)},
        {'ride_id': 102, 'driver_id': 1, 'user_id': 1, 'pickup_location': 'B', 'dropoff_location': 'C',
         'distance_km': 5.0, 'fare_amount': 50.0, 'ride_status': 'Completed',
         'ride_date_time': datetime(2024, 1, 7, 9, 0)},
        {'ride_id': 103, 'driver_id': 2, 'user_id': 2, 'pickup_location': 'C', 'dropoff_location': 'D',
         'distance_km': 20.0, 'fare_amount': 200.0, 'ride_status': 'Completed',
         'ride_date_time': datetime(2024, 1, 8, 18, 15)},
        {'ride_id': 104, 'driver_id': 2, 'user_id': 3, 'pickup_location': 'D', 'dropoff_location': 'E',
         'distance_km': 3.0, 'fare_amount': 30.0, 'ride_status': 'Canceled',
         'ride_date_time': datetime(2024, 1, 8, 19, 0)},
        {'ride_id': 105, 'driver_id': 3, 'user_id': 3, 'pickup_location': 'E', 'dropoff_location': 'F',
         'distance_km': 10.0, 'fare_amount': 80.0, 'ride_status': 'Completed',
         'ride_date_time': datetime(2024, 2, 1, 8, 45)},
        {'ride_id': 106, 'driver_id': 1, 'user_id': 2, 'pickup_location': 'F', 'dropoff_location': 'A',
         'distance_km': 4.0, 'fare_amount': 40.0, 'ride_status': 'Canceled',
         'ride_date_time': datetime(2024, 2, 2, 12, 0)},
    ]


def make_food_orders():
    return [
        {'order_id': 201, 'user_id': 1, 'restaurant_id': 10,
         'order_date_time': datetime(2024, 1, 6, 10, 0), 'order_status': 'Completed',
         'total_price': 25.0, 'delivery_fee': 3.0},
        {'order_id': 202, 'user_id': 1, 'restaurant_id': 10,
         'order_date_time': datetime(2024, 1, 6, 10, 15), 'order_status': 'Completed',
         'total_price': 15.0, 'delivery_fee': 2.0},
        {'order_id': 203, 'user_id': 2, 'restaurant_id': 11,
         'order_date_time': datetime(2024, 1, 8, 12, 30), 'order_status': 'Completed',
         'total_price': 40.0, 'delivery_fee': 5.0},
        {'order_id': 204, 'user_id': 2, 'restaurant_id': 11,
         'order_date_time': datetime(2024, 1, 9, 19, 0), 'order_status': 'Canceled',
         'total_price': 30.0, 'delivery_fee': 4.0},
        {'order_id': 205, 'user_id': 3, 'restaurant_id': 12,
         'order_date_time': datetime(2024, 1, 10, 12, 45), 'order_status': 'Refunded',
         'total_price': 20.0, 'delivery_fee': 2.5},
        {'order_id': 206, 'user_id': 4, 'restaurant_id': 12,
         'order_date_time': datetime(2024, 2, 3, 20, 0), 'order_status': 'Completed',
         'total_price': 60.0, 'delivery_fee': 6.0},
    ]


@pytest.fixture
def drivers():
    return make_drivers()


@pytest.fixture
def restaurants():
    return make_restaurants()


@pytest.fixture
def rides():
    return make_rides()


@pytest.fixture
def food_orders():
    return make_food_orders()


@pytest.fixture
def sample_store():
    """Store with all four relations loaded and references checked."""
    return RelationStore.from_records(
        rides=make_rides(),
        food_orders=make_food_orders(),
        drivers=make_drivers(),
        restaurants=make_restaurants(),
    )
