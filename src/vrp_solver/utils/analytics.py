"""
Analytics module for the VRP solver.
Provides tabular reports of solutions and search runs.
"""

import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


class Analytics:
    """
    Analytics class for VRP solutions.

    Args:
        solution (Solution): Solution to analyse
        evaluator (ObjectiveEvaluator): Evaluator of the run that produced the solution
    """

    def __init__(self, solution, evaluator):
        self.solution = solution
        self.evaluator = evaluator
        self.checker = evaluator.checker

    def summary(self):
        """
        Headline figures of the solution.

        Returns:
            dict: Summary statistics
        """
        routes = self.route_table()
        problem = self.solution.problem
        summary = {
            "jobs": len(problem.jobs),
            "assigned": len(problem.jobs) - len(self.solution.unassigned),
            "unassigned": len(self.solution.unassigned),
            "routes": len(routes),
            "vehicles_used": routes["vehicle_id"].nunique() if not routes.empty else 0,
            "total_distance": float(routes["distance"].sum()) if not routes.empty else 0.0,
            "total_duration": float(routes["duration"].sum()) if not routes.empty else 0.0,
            "total_cost": float(routes["cost"].sum()) if not routes.empty else 0.0,
            "avg_utilization": float(routes["utilization"].mean() * 100) if not routes.empty else 0.0,
        }

        unassigned = pd.Series([reason.value for reason in self.solution.unassigned.values()], dtype=object)
        summary["unassigned_reasons"] = unassigned.value_counts().to_dict()
        return summary

    def job_status_table(self):
        """
        Final status of every job, one row per activity for assigned jobs.

        Returns:
            pandas.DataFrame: Job status records
        """
        records = []
        for route in self.solution.non_empty_routes:
            schedule = self.checker.schedule(self.solution, route)
            for position, stop in enumerate(schedule.stops):
                activity = stop.activity
                records.append({
                    "job_id": activity.job.id,
                    "status": "assigned",
                    "reason": None,
                    "vehicle_id": route.vehicle.id,
                    "shift_index": route.actor.shift_index,
                    "position": position,
                    "task": activity.task.kind.value,
                    "location": activity.location,
                    "arrival": stop.arrival,
                    "departure": stop.departure,
                    "waiting": stop.waiting,
                    "tardiness": stop.tardiness,
                })

        for job_id, reason in self.solution.unassigned.items():
            records.append({
                "job_id": job_id,
                "status": "unassigned",
                "reason": reason.value,
                "vehicle_id": None,
                "shift_index": None,
                "position": None,
                "task": None,
                "location": None,
                "arrival": np.nan,
                "departure": np.nan,
                "waiting": np.nan,
                "tardiness": np.nan,
            })
        return pd.DataFrame(records, columns=[
            "job_id", "status", "reason", "vehicle_id", "shift_index", "position", "task",
            "location", "arrival", "departure", "waiting", "tardiness",
        ])

    def route_table(self):
        """
        Analyze the efficiency of routes in the solution.

        Utilization is the peak load over capacity, taking the busiest dimension.

        Returns:
            pandas.DataFrame: One row per non-empty route
        """
        rows = []
        for route in self.solution.non_empty_routes:
            schedule = self.checker.schedule(self.solution, route)
            capacity = self.checker.registry.capacities[route.actor.key]
            peak = schedule.loads.max(axis=0)
            with np.errstate(divide="ignore", invalid="ignore"):
                ratios = np.where(capacity > 0, peak / capacity, 0.0)

            legs = schedule.leg_distance[:len(route.activities)]
            rows.append({
                "vehicle_id": route.vehicle.id,
                "shift_index": route.actor.shift_index,
                "jobs": len(route.job_ids()),
                "activities": len(route.activities),
                "distance": schedule.distance,
                "driving_time": schedule.driving,
                "waiting_time": schedule.total_waiting,
                "service_time": schedule.total_service,
                "tardiness": schedule.total_tardiness,
                "duration": schedule.duration,
                "cost": schedule.cost(),
                "utilization": float(ratios.max()) if ratios.size else 0.0,
                "avg_leg_distance": float(np.mean(legs)) if len(legs) else 0.0,
                "feasible": schedule.is_feasible,
            })
        return pd.DataFrame(rows, columns=[
            "vehicle_id", "shift_index", "jobs", "activities", "distance", "driving_time",
            "waiting_time", "service_time", "tardiness", "duration", "cost", "utilization",
            "avg_leg_distance", "feasible",
        ])

    def cost_breakdown(self):
        """Cost components overall and per route, see ObjectiveEvaluator.cost_breakdown."""
        return self.evaluator.cost_breakdown(self.solution)

    @staticmethod
    def operator_report(statistics):
        """
        Usage and final selection probability of every operator.

        Args:
            statistics (SearchStatistics): Statistics of a search run

        Returns:
            pandas.DataFrame: One row per operator
        """
        rows = []
        for kind, usage, weights in (("ruin", statistics.ruin_usage, statistics.ruin_weights),
                                     ("recreate", statistics.recreate_usage, statistics.recreate_weights)):
            for name, count in usage.items():
                rows.append({
                    "kind": kind,
                    "operator": name,
                    "usage": count,
                    "probability": weights.get(name, 0.0),
                })
        report = pd.DataFrame(rows, columns=["kind", "operator", "usage", "probability"])

        details = pd.DataFrame(statistics.iter_details)
        if details.empty:
            report["improvements"] = 0
            return report

        improvements = pd.concat([
            details[details["improved"]].groupby("ruin_operator").size(),
            details[details["improved"]].groupby("recreate_operator").size(),
        ])
        report["improvements"] = report["operator"].map(improvements).fillna(0).astype(int)
        return report

    @staticmethod
    def improvement_curve(statistics):
        """Best cost per improving generation as a DataFrame."""
        return pd.DataFrame(statistics.improvement_curve, columns=["generation", "best_cost"])
