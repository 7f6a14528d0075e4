"""
加密货币行情数据服务
从行情数据提供商（CoinGecko）拉取快照与时间序列，持久化缓存后生成图表数据

架构分层：
  数据获取层 (Acquisition)  → 从 CoinGecko 拉取快照列表与单币种时间序列
  缓存层     (Cache)        → Redis / MongoDB / 文件三级持久缓存（仅作故障兜底）
  处理层     (Processing)   → 多币种时间轴对齐、百分比归一化、日 K 聚合
  分析层     (Analysis)     → 示意性技术指标
"""

__version__ = "1.0.0"
