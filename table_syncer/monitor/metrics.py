"""
监控指标收集器
"""
import json
import threading
from collections import defaultdict, deque
from datetime import datetime
from typing import Any, Dict, Optional

import requests
from loguru import logger

from ..config.config import MonitorConfig


class MetricsCollector:
    """同步运行指标收集器"""

    def __init__(self, config: MonitorConfig):
        self.config = config
        self._lock = threading.Lock()

        # 按任务统计运行结果
        self.run_counters = defaultdict(lambda: defaultdict(int))

        # 页面失败记录
        self.page_errors = deque(maxlen=1000)

        # 运行耗时
        self.run_durations = deque(maxlen=1000)

        # 每个任务最近一次运行
        self.last_runs: Dict[str, Dict[str, Any]] = {}

        self.start_time = datetime.now()

    def record_run(self, task_id: str, status: str, total: int = 0,
                   duration_seconds: float = 0.0, error: Optional[str] = None) -> None:
        """记录一次运行结果"""
        with self._lock:
            self.run_counters[task_id][status] += 1
            self.run_counters[task_id]['total'] += 1
            self.run_durations.append({
                'task_id': task_id,
                'duration': duration_seconds,
                'timestamp': datetime.now()
            })
            self.last_runs[task_id] = {
                'status': status,
                'rows': total,
                'duration': round(duration_seconds, 3),
                'error': error,
                'timestamp': datetime.now().isoformat()
            }

        if status == 'failed' and self.config.alert_on_failure:
            self.send_alert('ERROR', f"Sync task {task_id} failed", {'error': error, 'rows': total})

    def record_page_error(self, task_id: str, page: int, error_message: str) -> None:
        """记录页面失败"""
        with self._lock:
            self.page_errors.append({
                'task_id': task_id,
                'page': page,
                'message': error_message,
                'timestamp': datetime.now()
            })

    def get_metrics(self) -> Dict[str, Any]:
        """获取所有指标"""
        with self._lock:
            uptime = (datetime.now() - self.start_time).total_seconds()

            # 计算成功率
            success_rates = {}
            for task_id, counters in self.run_counters.items():
                total = counters.get('total', 0)
                success = counters.get('success', 0)
                success_rates[task_id] = round(success / total * 100, 2) if total else 0

            # 计算平均耗时
            avg_durations = {}
            for task_id in self.run_counters:
                durations = [d['duration'] for d in self.run_durations if d['task_id'] == task_id]
                if durations:
                    avg_durations[task_id] = round(sum(durations) / len(durations), 3)

            return {
                'uptime_seconds': uptime,
                'run_counters': {k: dict(v) for k, v in self.run_counters.items()},
                'success_rates': success_rates,
                'average_run_duration': avg_durations,
                'last_runs': dict(self.last_runs),
                'recent_page_errors': list(self.page_errors)[-10:],
                'timestamp': datetime.now().isoformat()
            }

    def get_health_status(self) -> Dict[str, Any]:
        """获取健康状态"""
        metrics = self.get_metrics()

        health_status = "healthy"
        issues = []

        for task_id, last in metrics['last_runs'].items():
            if last['status'] == 'failed':
                health_status = "degraded"
                issues.append(f"Last run of {task_id} failed: {last['error']}")

        for task_id, rate in metrics['success_rates'].items():
            if rate < 50:
                health_status = "unhealthy"
                issues.append(f"Low success rate for {task_id}: {rate}%")

        return {
            'status': health_status,
            'issues': issues,
            'metrics_summary': {
                'uptime_hours': round(metrics['uptime_seconds'] / 3600, 2),
                'success_rates': metrics['success_rates'],
                'page_errors': len(self.page_errors)
            }
        }

    def send_alert(self, alert_type: str, message: str, details: Optional[Dict] = None) -> None:
        """发送告警"""
        if not self.config.alert_webhook:
            return

        payload = {
            'type': alert_type,
            'message': message,
            'details': details or {},
            'timestamp': datetime.now().isoformat(),
            'service': 'table_syncer'
        }

        try:
            response = requests.post(self.config.alert_webhook, json=payload, timeout=5)
            if response.status_code != 200:
                logger.error(f"Failed to send alert: {response.text}")
        except requests.RequestException as e:
            logger.error(f"Error sending alert: {e}")

    def export_metrics(self, format: str = 'json') -> str:
        """导出指标"""
        metrics = self.get_metrics()

        if format == 'json':
            return json.dumps(metrics, ensure_ascii=False, indent=2, default=str)
        elif format == 'prometheus':
            lines = [
                '# HELP syncer_uptime_seconds Syncer uptime in seconds',
                '# TYPE syncer_uptime_seconds gauge',
                f'syncer_uptime_seconds {metrics["uptime_seconds"]}',
            ]

            for task_id, counters in metrics['run_counters'].items():
                for status, count in counters.items():
                    lines.append(f'syncer_runs_total{{task="{task_id}",status="{status}"}} {count}')

            for task_id, rate in metrics['success_rates'].items():
                lines.append(f'syncer_success_rate{{task="{task_id}"}} {rate}')

            lines.append(f'syncer_page_errors_total {len(self.page_errors)}')

            return '\n'.join(lines)
        else:
            raise ValueError(f"Unsupported format: {format}")
