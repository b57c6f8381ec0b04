#!/usr/bin/env python3
"""
qBit Throttler - 入口
qBittorrent 全局限速自适应控制器

功能:
- 按时间窗口 / 外部状态切换全局上传下载限速
- Jellyfin 播放时自动收紧上传
- 驻留时间防抖，紧急收紧立即生效
- 会话自动续期，失败指数退避重试
- 配置热加载 (文件修改 / SIGHUP)
"""

import os
import sys
import signal
import threading
from typing import Optional

from qthrottle import (
    C, Config, ControlLoop, CredentialsRejected, AuthFailure, DecisionEngine, JellyfinSignal,
    QBittorrentApi, Reconciler, Sampler, SessionManager, reinit_logger
)
from qthrottle.errors import RemoteApiError
from qthrottle.utils import fmt_cap, wall_time


class Controller:
    """主控制器 - 组装各模块并管理进程生命周期"""

    def __init__(self, path: str):
        cfg, err = Config.load(path)
        if err:
            print(f"❌ 配置错误: {err}")
            sys.exit(1)

        self.config = cfg
        self.config_path = path
        self.last_config_check = wall_time()
        self.logger = reinit_logger(cfg.log_level, cfg.log_file)

        self.api = QBittorrentApi(cfg.host, cfg.username, cfg.password,
                                  cfg.api_connect_timeout, cfg.api_read_timeout)
        self.sessions = SessionManager(self.api, ttl=cfg.session_ttl)

        self.signal_source: Optional[JellyfinSignal] = None
        if cfg.jellyfin_enabled:
            self.signal_source = JellyfinSignal(
                cfg.jellyfin_address, cfg.jellyfin_api_token,
                active_within=cfg.jellyfin_active_within_secs,
                playing_only=cfg.jellyfin_playing_only,
                timeout=cfg.jellyfin_timeout
            )

        self.loop = ControlLoop(
            sampler=Sampler(self.signal_source),
            engine=DecisionEngine(cfg.min_dwell_seconds),
            reconciler=Reconciler(self.api, self.sessions, cfg.retry_policy),
            sessions=self.sessions,
            profile=cfg.schedule,
            interval=cfg.tick_interval,
            resync_interval=cfg.resync_interval
        )

        self._reload_requested = threading.Event()
        self._stop = threading.Event()

        # 信号处理
        signal.signal(signal.SIGINT, lambda *_: self._shutdown())
        signal.signal(signal.SIGTERM, lambda *_: self._shutdown())
        if hasattr(signal, 'SIGHUP'):
            signal.signal(signal.SIGHUP, lambda *_: self._reload_requested.set())

    def _shutdown(self):
        """优雅关闭"""
        if self._stop.is_set():
            return
        self.logger.info("🛑 正在停止服务...")
        self._stop.set()
        self.loop.stop()

    def _check_config(self):
        """检查配置更新 (后台线程)"""
        while not self._stop.wait(1):
            now = wall_time()
            forced = self._reload_requested.is_set()
            if not forced and now - self.last_config_check < C.CONFIG_CHECK:
                continue
            self.last_config_check = now
            self._reload_requested.clear()

            try:
                mtime = os.path.getmtime(self.config_path)
            except OSError as e:
                self.logger.warning(f"⚠️ 无法读取配置文件: {e}")
                continue
            if not forced and mtime <= self.config._mtime:
                continue

            new_cfg, err = Config.load(self.config_path)
            if err:
                self.logger.error(f"❌ 配置重载失败，继续使用旧配置: {err}")
                self.config._mtime = mtime
                continue
            self.config = new_cfg
            self.loop.reload(new_cfg.schedule)
            self.logger.info("📝 配置已重新加载")

    def _connect(self):
        """连接 qBittorrent"""
        for i in range(C.CONNECT_ATTEMPTS):
            if self._stop.is_set():
                return
            try:
                self.sessions.get_valid_session()
                self.logger.info(f"✅ 已连接 qBittorrent {self.api.version()}")
                return
            except CredentialsRejected:
                self.logger.error("❌ 登录失败，请检查用户名密码")
                sys.exit(1)
            except (AuthFailure, RemoteApiError) as e:
                if i < C.CONNECT_ATTEMPTS - 1:
                    self.logger.warning(f"连接失败，重试中... ({i+1}/{C.CONNECT_ATTEMPTS})")
                    self._stop.wait(2 ** i)
                else:
                    # 控制循环会在每个 tick 继续尝试
                    self.logger.error(f"❌ 无法连接: {e.message}")

    def run(self):
        """主运行入口"""
        cfg = self.config
        profile = cfg.schedule

        self.logger.info("=" * 60)
        self.logger.info(f"🚀 qBit Throttler v{C.VERSION}")
        self.logger.info(f"   qBittorrent: {cfg.host}")
        self.logger.info(f"   默认限速: ↑{fmt_cap(profile.default.upload_kib)} ↓{fmt_cap(profile.default.download_kib)}")
        for rule in profile.rules:
            cond = " & ".join(c for c in (str(rule.window) if rule.window else "",
                                          f"state={rule.state}" if rule.state else "") if c)
            flag = " ⚡" if rule.emergency else ""
            self.logger.info(f"   规则 {rule.name}: {cond} → {rule.targets}{flag}")
        self.logger.info(f"   间隔: {cfg.tick_interval}s  驻留: {cfg.min_dwell_seconds}s")
        self.logger.info(f"   Jellyfin: {'✅' if self.signal_source else '❌'}")
        self.logger.info("=" * 60)

        self._connect()

        threading.Thread(target=self._check_config, daemon=True, name="Config-Watch").start()

        try:
            self.loop.run()
        finally:
            self._stop.set()
            if self.signal_source:
                self.signal_source.close()


def main():
    config_paths = [
        "config.json",
        "/etc/qbit-throttler/config.json",
        os.path.expanduser("~/.config/qbit-throttler/config.json")
    ]

    config_path = None
    for p in config_paths:
        if os.path.exists(p):
            config_path = p
            break

    if len(sys.argv) > 1:
        config_path = sys.argv[1]

    if not config_path or not os.path.exists(config_path):
        print("❌ 找不到配置文件")
        print("请创建 config.json 或指定配置文件路径")
        print(f"用法: {sys.argv[0]} [config.json]")
        sys.exit(1)

    controller = Controller(config_path)
    controller.run()


if __name__ == "__main__":
    main()
