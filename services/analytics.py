# services/analytics.py
"""
Marketplace Analytics Service

Aggregates orders, products and users for the admin dashboard and the
seller financial view. Order rows are loaded into pandas frames for the
monthly and status breakdowns; top-N rankings are computed in SQL.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd
from sqlalchemy import func, select

from core.database_models import (
    db, Order, OrderItem, OrderStatus, PaymentStatus, Product, User, UserRole
)
from core.utils import money_to_float

# Configure logging
logger = logging.getLogger(__name__)

EXCLUDED_FROM_SALES = (OrderStatus.CANCELLED, OrderStatus.REJECTED)
LOW_STOCK_THRESHOLD = 5


class MarketplaceAnalytics:
    """
    Read-only aggregate queries over the order tables
    """

    def __init__(self, top_n: int = 10):
        self.top_n = top_n

    @staticmethod
    def _order_filters(date_from: Optional[datetime] = None, date_to: Optional[datetime] = None,
                       seller_id: Optional[str] = None) -> List:
        filters = []
        if date_from is not None:
            filters.append(Order.created_at >= date_from)
        if date_to is not None:
            filters.append(Order.created_at <= date_to)
        if seller_id:
            filters.append(Order.seller_id == seller_id)
        return filters

    def _load_orders(self, filters: List) -> pd.DataFrame:
        """Load order rows for the given filters"""
        query = select(
            Order.id,
            Order.status,
            Order.payment_status,
            Order.total,
            Order.created_at,
        ).where(*filters)

        df = pd.read_sql(query, db.session.connection())
        if not df.empty:
            df['created_at'] = pd.to_datetime(df['created_at'])
            df['total'] = df['total'].astype(float)
            # Enum columns may load as members or as their names depending on the driver
            df['status'] = df['status'].map(lambda value: getattr(value, 'value', value))
            df['payment_status'] = df['payment_status'].map(lambda value: getattr(value, 'value', value))
        return df

    @staticmethod
    def monthly_revenue(orders_df: pd.DataFrame) -> List[Dict[str, Any]]:
        """Revenue and order count of completed orders per calendar month"""
        if orders_df.empty:
            return []
        completed = orders_df[orders_df['status'] == OrderStatus.COMPLETED.value]
        if completed.empty:
            return []

        grouped = (
            completed
            .assign(month=completed['created_at'].dt.strftime('%Y-%m'))
            .groupby('month')
            .agg(revenue=('total', 'sum'), orders=('id', 'count'))
            .reset_index()
            .sort_values('month')
        )
        return [
            {'month': row.month, 'revenue': round(float(row.revenue), 2), 'orders': int(row.orders)}
            for row in grouped.itertuples(index=False)
        ]

    @staticmethod
    def status_distribution(orders_df: pd.DataFrame) -> Dict[str, int]:
        distribution = {status.value: 0 for status in OrderStatus}
        if not orders_df.empty:
            for status, count in orders_df['status'].value_counts().items():
                distribution[status] = int(count)
        return distribution

    @staticmethod
    def _revenue(orders_df: pd.DataFrame, status: OrderStatus = OrderStatus.COMPLETED) -> float:
        if orders_df.empty:
            return 0.0
        return round(float(orders_df.loc[orders_df['status'] == status.value, 'total'].sum()), 2)

    def top_products(self, filters: List) -> List[Dict[str, Any]]:
        """Best-selling products by quantity in orders that were not cancelled or rejected"""
        total_sold = func.sum(OrderItem.quantity).label('total_sold')
        revenue = func.sum(OrderItem.price * OrderItem.quantity).label('revenue')
        query = (
            select(OrderItem.product_id, Product.title, Product.seller_id, total_sold, revenue)
            .join(Order, Order.id == OrderItem.order_id)
            .join(Product, Product.id == OrderItem.product_id)
            .where(Order.status.notin_(EXCLUDED_FROM_SALES), *filters)
            .group_by(OrderItem.product_id, Product.title, Product.seller_id)
            .order_by(total_sold.desc())
            .limit(self.top_n)
        )
        return [
            {
                'productId': row.product_id,
                'title': row.title,
                'sellerId': row.seller_id,
                'totalSold': int(row.total_sold or 0),
                'revenue': money_to_float(row.revenue or 0),
            }
            for row in db.session.execute(query)
        ]

    def top_sellers(self, filters: List) -> List[Dict[str, Any]]:
        """Sellers ranked by revenue from completed orders"""
        revenue = func.sum(Order.total).label('revenue')
        order_count = func.count(Order.id).label('total_orders')
        query = (
            select(User.id, User.name, User.business_name, order_count, revenue)
            .join(Order, Order.seller_id == User.id)
            .where(Order.status == OrderStatus.COMPLETED, *filters)
            .group_by(User.id, User.name, User.business_name)
            .order_by(revenue.desc())
            .limit(self.top_n)
        )
        return [
            {
                'sellerId': row.id,
                'name': row.name,
                'businessName': row.business_name,
                'totalOrders': int(row.total_orders),
                'revenue': money_to_float(row.revenue or 0),
            }
            for row in db.session.execute(query)
        ]

    def get_admin_analytics(self, date_from: Optional[datetime] = None,
                            date_to: Optional[datetime] = None,
                            seller_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Dashboard figures for administrators

        Args:
            date_from: Only orders created at or after this time
            date_to: Only orders created at or before this time
            seller_id: Restrict order figures to one seller
        """
        filters = self._order_filters(date_from, date_to, seller_id)
        orders_df = self._load_orders(filters)

        product_count = select(func.count(Product.id))
        if seller_id:
            product_count = product_count.where(Product.seller_id == seller_id)

        analytics = {
            'totalUsers': db.session.scalar(select(func.count(User.id))),
            'usersByRole': self.count_users_by_role(),
            'totalProducts': db.session.scalar(product_count),
            'totalOrders': int(len(orders_df)),
            'totalRevenue': self._revenue(orders_df),
            'monthlyRevenue': self.monthly_revenue(orders_df),
            'topProducts': self.top_products(filters),
            'topSellers': self.top_sellers(filters),
            'orderStatusDistribution': self.status_distribution(orders_df),
        }
        logger.debug(f"Admin analytics computed over {analytics['totalOrders']} orders")
        return analytics

    def get_seller_stats(self, seller_id: str, date_from: Optional[datetime] = None,
                         date_to: Optional[datetime] = None) -> Dict[str, Any]:
        """Financial summary for one seller"""
        filters = self._order_filters(date_from, date_to, seller_id)
        orders_df = self._load_orders(filters)

        pending_revenue = 0.0
        paid_orders = 0
        if not orders_df.empty:
            open_orders = orders_df[~orders_df['status'].isin([s.value for s in EXCLUDED_FROM_SALES]
                                                              + [OrderStatus.COMPLETED.value])]
            pending_revenue = round(float(open_orders['total'].sum()), 2)
            paid_orders = int((orders_df['payment_status'] == PaymentStatus.COMPLETED.value).sum())

        products_query = select(func.count(Product.id)).where(Product.seller_id == seller_id)
        low_stock_query = products_query.where(
            Product.is_active.is_(True), Product.stock < LOW_STOCK_THRESHOLD
        )
        average = 0.0
        completed_count = self.status_distribution(orders_df)[OrderStatus.COMPLETED.value]
        total_revenue = self._revenue(orders_df)
        if completed_count:
            average = round(total_revenue / completed_count, 2)

        return {
            'totalOrders': int(len(orders_df)),
            'totalRevenue': total_revenue,
            'pendingRevenue': pending_revenue,
            'averageOrderValue': average,
            'paidOrders': paid_orders,
            'totalProducts': db.session.scalar(products_query),
            'activeProducts': db.session.scalar(products_query.where(Product.is_active.is_(True))),
            'lowStockProducts': db.session.scalar(low_stock_query),
            'monthlyRevenue': self.monthly_revenue(orders_df),
            'topProducts': self.top_products(filters),
            'orderStatusDistribution': self.status_distribution(orders_df),
        }

    @staticmethod
    def count_users_by_role() -> Dict[str, int]:
        counts = {role.value: 0 for role in UserRole}
        rows = db.session.execute(select(User.role, func.count(User.id)).group_by(User.role))
        for role, count in rows:
            counts[getattr(role, 'value', role)] = int(count)
        return counts


# Singleton instance for application use
analytics_service = MarketplaceAnalytics()
